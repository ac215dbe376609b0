"""
OpenTelemetry tracing for job execution.

Each job run gets one span. Spans go nowhere until setup_tracing() installs a
provider, so importing the library never starts exporters on its own.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from dbqueue import __version__
from dbqueue.config import Settings, get_settings
from dbqueue.constants import SPAN_EXECUTE_JOB
from dbqueue.types.job import Failed, Outcome, RetryRequested

# Global tracer instance
_tracer: Tracer | None = None


def _build_provider(settings: Settings, enable_console_export: bool) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
                "dbqueue.jobs_table": settings.jobs_table,
                "dbqueue.queue": settings.queue,
            }
        )
    )

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
            )
        )

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    return provider


def setup_tracing(
    settings: Settings | None = None,
    enable_console_export: bool = False,
) -> Tracer:
    """
    Install a tracer provider for the worker process.

    Spans are exported over OTLP only when an endpoint is configured.

    Args:
        settings: Application settings. Defaults to the cached settings.
        enable_console_export: If True, also print finished spans.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = settings or get_settings()
    trace.set_tracer_provider(_build_provider(settings, enable_console_export))
    _tracer = trace.get_tracer(settings.otel_service_name)
    return _tracer


def get_tracer() -> Tracer:
    """
    Get the tracer set up by setup_tracing(), or one from the global
    provider (a no-op unless the application installed one).
    """
    if _tracer is None:
        return trace.get_tracer("dbqueue")
    return _tracer


@contextmanager
def job_span(job_id: int, queue: str, attempt: int, handler_type: str | None) -> Iterator[Span]:
    """
    Open the span covering one handler invocation.

    Args:
        job_id: The job being run.
        queue: The job's queue.
        attempt: 1-based number of this attempt.
        handler_type: Type identifier of the handler.

    Yields:
        The active span.
    """
    with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
        span.set_attribute("dbqueue.job_id", job_id)
        span.set_attribute("dbqueue.queue", queue)
        span.set_attribute("dbqueue.attempt", attempt)
        if handler_type is not None:
            span.set_attribute("dbqueue.handler_type", handler_type)
        yield span


def record_outcome(span: Span, outcome: Outcome) -> None:
    """Tag a job span with what the handler produced."""
    span.set_attribute("dbqueue.outcome", outcome.kind)

    if isinstance(outcome, RetryRequested):
        span.set_attribute("dbqueue.retry_delay_seconds", outcome.delay_seconds)
    elif isinstance(outcome, Failed):
        span.set_status(Status(StatusCode.ERROR, outcome.message))
