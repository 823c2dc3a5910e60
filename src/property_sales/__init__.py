"""Human-in-the-loop property sale workflow."""

__version__ = "1.0.0"
