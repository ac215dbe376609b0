"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel


class Success(BaseModel):
    """The handler completed normally."""

    kind: Literal["success"] = "success"


class RetryRequested(BaseModel):
    """The handler asked to be re-attempted after a delay."""

    kind: Literal["retry_requested"] = "retry_requested"
    delay_seconds: int
    message: str


class Failed(BaseModel):
    """The handler (or its payload) failed."""

    kind: Literal["failed"] = "failed"
    message: str


# Result of one handler invocation, interpreted by the job executor
Outcome = Success | RetryRequested | Failed


class QueueStatus(BaseModel):
    """
    Row counts for one queue.

    A snapshot taken with a single aggregate query; it is not isolated from
    concurrent worker activity.
    """

    total: int
    failed: int
    locked: int
    outstanding: int

    @classmethod
    def from_counts(cls, total: int, failed: int, locked: int) -> "QueueStatus":
        return cls(
            total=total,
            failed=failed,
            locked=locked,
            outstanding=total - locked - failed,
        )


@dataclass
class WorkerRunSummary:
    """
    What a worker did before it stopped.
    """

    worker_name: str
    iterations: int
    jobs_run: int
