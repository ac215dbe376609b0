"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class ExecutionState(StrEnum):
    """
    Job executor states.

    State transitions:
    - RUNNING -> SUCCEEDED (handler returned normally, row deleted)
    - RUNNING -> RETRY_REQUESTED (handler asked for a delayed re-attempt)
    - RUNNING -> FAILED (handler error, bad payload, or retries exhausted)
    """

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRY_REQUESTED = "retry_requested"
    FAILED = "failed"


class CandidateOrder(StrEnum):
    """
    Order in which claimable rows are offered to a polling worker.

    Newest-first lets fresh work through when an old job keeps failing, at
    the cost of possibly starving old jobs under a sustained backlog.
    """

    NEWEST_FIRST = "newest_first"
    OLDEST_FIRST = "oldest_first"


# Default values
DEFAULT_QUEUE = "default"
DEFAULT_JOBS_TABLE = "jobs"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_SLEEP_SECONDS = 5.0
DEFAULT_RETRY_DELAY_SECONDS = 7200
CANDIDATE_BATCH_SIZE = 10

# Handler payload separator: "<type-identifier>:<serialized-body>"
HANDLER_TYPE_SEPARATOR = ":"

# Metrics names
METRIC_QUEUE_JOBS = "dbqueue_jobs"
METRIC_JOBS_COMPLETED = "dbqueue_jobs_completed_total"
METRIC_JOB_DURATION = "dbqueue_job_duration_seconds"
METRIC_LEASE_ACQUIRED = "dbqueue_lease_acquired_total"
METRIC_LEASE_CONTENDED = "dbqueue_lease_contended_total"

# Trace span names
SPAN_EXECUTE_JOB = "execute_job"
