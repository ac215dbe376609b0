"""
Structured logging setup using structlog.

Library modules log through the standard library with extra={...} fields.
Once a worker process calls setup_logging(), structlog's ProcessorFormatter
renders those records, together with any context bound via bind_context()
and the ids of the current job span.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from dbqueue.config import Settings, get_settings

# Stored error strings can carry a whole captured stdout
MAX_ERROR_LOG_LENGTH = 2000

# Libraries whose INFO output would drown the worker's own records
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the active job span's trace and span ids."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def truncate_error(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Shorten oversized "error" fields."""
    error = event_dict.get("error")
    if isinstance(error, str) and len(error) > MAX_ERROR_LOG_LENGTH:
        event_dict["error"] = error[:MAX_ERROR_LOG_LENGTH] + "...[truncated]"
    return event_dict


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging for a worker or status process.

    Records go to stderr; stdout belongs to job handlers, and is what
    fail_on_output inspects.

    Args:
        settings: Application settings. Defaults to the cached settings.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        truncate_error,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.log_format),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for application code that prefers key/value calls."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind key/value pairs to every later log record of this context,
    e.g. the worker identity for the lifetime of a worker process.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
