"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from dbqueue.observability.logging import bind_context, get_logger, setup_logging
from dbqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from dbqueue.observability.tracing import get_tracer, job_span, record_outcome, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "job_span",
    "record_outcome",
]
