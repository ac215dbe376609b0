"""
Type definitions for the job queue.
"""

from dbqueue.types.job import (
    Failed,
    Outcome,
    QueueStatus,
    RetryRequested,
    Success,
    WorkerRunSummary,
)

__all__ = [
    "Success",
    "RetryRequested",
    "Failed",
    "Outcome",
    "QueueStatus",
    "WorkerRunSummary",
]
