"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from dbqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_CONTENDED,
    METRIC_QUEUE_JOBS,
)
from dbqueue.types.job import QueueStatus

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue row counts by state
    - Job resolutions and execution duration
    - Lease acquisitions and contention
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        # Queue row counts (by queue and state)
        self.queue_jobs = Gauge(
            METRIC_QUEUE_JOBS,
            "Number of jobs in the queue table",
            ["queue", "state"],
            registry=self._registry,
        )

        # Job resolutions counter
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job executions by outcome",
            ["queue", "status"],
            registry=self._registry,
        )

        # Job duration histogram
        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        # Lease acquired counter
        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_name"],
            registry=self._registry,
        )

        # Lease contention counter
        self.lease_contended = Counter(
            METRIC_LEASE_CONTENDED,
            "Total number of lease attempts lost to another worker",
            ["worker_name"],
            registry=self._registry,
        )

    def record_job_completed(
        self,
        queue: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job resolution."""
        self.jobs_completed.labels(queue=queue, status=status).inc()
        self.job_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_lease_acquired(self, worker_name: str) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(worker_name=worker_name).inc()

    def record_lease_contended(self, worker_name: str) -> None:
        """Record a lost lease race."""
        self.lease_contended.labels(worker_name=worker_name).inc()

    def update_queue_status(self, queue: str, status: QueueStatus) -> None:
        """Update row-count gauges for a queue."""
        for state, count in status.model_dump().items():
            self.queue_jobs.labels(queue=queue, state=state).set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics(port: int | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        port: If given, serve metrics over HTTP on this port.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    if port is not None:
        start_http_server(port)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
