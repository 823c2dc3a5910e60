from property_sales.middleware.metrics import MetricsMiddleware


__all__ = ["MetricsMiddleware"]
