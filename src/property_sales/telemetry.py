"""Unified observability setup for the property sales workflow.

Configures OpenTelemetry traces and metrics exported over OTLP.

Import this module BEFORE creating the FastAPI app.

Instrumentation Strategy:
- AUTO-INSTRUMENTATION: FastAPI, SQLAlchemy, httpx, logging
- CUSTOM INSTRUMENTATION: GenAI spans in llm.py, agent and checkpoint spans
  in engine.py and checkpoint.py
"""

import logging
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from property_sales import __version__
from property_sales.config import get_settings


logger = logging.getLogger(__name__)


def setup_telemetry(engine: Any = None) -> tuple[trace.Tracer, metrics.Meter]:
    """Initialize trace and meter providers plus auto-instrumentation.

    When ``otel_enabled`` is false the global no-op providers stay in place,
    so spans and metrics recorded elsewhere cost nothing.

    Args:
        engine: SQLAlchemy async engine for DB instrumentation (optional)

    Returns:
        Tuple of (tracer, meter)
    """
    settings = get_settings()

    if not settings.otel_enabled:
        logger.info("OpenTelemetry disabled")
        return trace.get_tracer(settings.otel_service_name), metrics.get_meter(
            settings.otel_service_name
        )

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.deployment_environment,
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/traces")
        )
    )
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/metrics"),
        export_interval_millis=10000,
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[metric_reader]))

    # httpx carries every LLM provider call
    HTTPXClientInstrumentor().instrument()
    # Adds trace_id and span_id to log records
    LoggingInstrumentor().instrument(set_logging_format=True)
    if engine:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    logger.info(
        "OpenTelemetry initialized",
        extra={
            "service": settings.otel_service_name,
            "endpoint": settings.otel_exporter_otlp_endpoint,
        },
    )

    return trace.get_tracer(settings.otel_service_name), metrics.get_meter(
        settings.otel_service_name
    )


def instrument_fastapi(app: Any) -> None:
    """Instrument the FastAPI app. Call after the app is created."""
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(
        app, excluded_urls="health", exclude_spans=["receive", "send"]
    )
