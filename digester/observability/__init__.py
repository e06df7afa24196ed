"""Observability layer - logging and metrics."""

from digester.observability.logging import setup_logging
from digester.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
