"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from eventpipe.observability.logging import setup_logging
from eventpipe.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from eventpipe.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
