"""
Exception types raised by the queue and by job handlers.
"""

from dbqueue.constants import DEFAULT_RETRY_DELAY_SECONDS


class QueueError(Exception):
    """Base class for all queue errors."""


class RetryException(QueueError):
    """
    Raised by a handler to ask for a delayed re-attempt.

    The attempt still counts against the job's max_attempts budget, but the
    job is not marked as failed unless this was its last allowed attempt.

    Example:
        def perform(self) -> None:
            if not upstream_ready():
                raise RetryException("upstream not ready", delay_seconds=60)
    """

    def __init__(self, message: str, delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS):
        super().__init__(message)
        self.message = message
        self.delay_seconds = delay_seconds


class HandlerResolutionError(QueueError):
    """The stored handler payload is missing or cannot be deserialized."""


class HandlerNotRegisteredError(HandlerResolutionError):
    """The payload's type identifier has no registered handler class."""

    def __init__(self, type_id: str):
        super().__init__(f"No handler registered for type: {type_id}")
        self.type_id = type_id


class UnexpectedOutputError(QueueError):
    """A handler wrote to stdout while running with fail_on_output enabled."""

    def __init__(self, output: str):
        super().__init__(f"Job produced unexpected output: {output}")
        self.output = output


class EnqueueError(QueueError):
    """Inserting a job affected no rows."""
