"""
Queue status reporting.
"""

import sys

from dbqueue.config import get_settings
from dbqueue.constants import DEFAULT_QUEUE
from dbqueue.db import JobStore, engine_from_settings
from dbqueue.observability.logging import setup_logging
from dbqueue.observability.metrics import MetricsCollector, get_metrics
from dbqueue.types.job import QueueStatus


def get_queue_status(
    store: JobStore,
    queue: str = DEFAULT_QUEUE,
    metrics: MetricsCollector | None = None,
) -> QueueStatus:
    """
    Get row counts for a queue and publish them as gauges.

    Read-only; safe to call while workers are running.

    Args:
        store: The job store.
        queue: The queue name.
        metrics: Metrics collector to update.

    Returns:
        QueueStatus for the queue.
    """
    status = store.status(queue)
    (metrics or get_metrics()).update_queue_status(queue, status)
    return status


def main() -> None:
    """Print the status of the configured queue (or argv[1]) as JSON."""
    settings = get_settings()
    setup_logging(settings)

    queue = sys.argv[1] if len(sys.argv) > 1 else settings.queue
    store = JobStore(engine_from_settings(settings), table_name=settings.jobs_table)

    print(get_queue_status(store, queue).model_dump_json())


if __name__ == "__main__":
    main()
