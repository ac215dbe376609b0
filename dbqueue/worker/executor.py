"""
Job executor.

Owns one leased job: loads its handler, runs it, and drives the lease to a
terminal resolution. Exactly one storage mutation is made per resolution.
"""

import logging
import time

from dbqueue.constants import DEFAULT_MAX_ATTEMPTS, ExecutionState
from dbqueue.db.store import JobStore
from dbqueue.errors import HandlerResolutionError
from dbqueue.lease import Lease
from dbqueue.observability.metrics import MetricsCollector, get_metrics
from dbqueue.observability.tracing import job_span, record_outcome
from dbqueue.types.job import Failed, Outcome, RetryRequested, Success
from dbqueue.worker.handlers import Handler, HandlerRegistry, default_registry, invoke_handler

logger = logging.getLogger(__name__)


class JobExecutor:
    """
    Runs a single leased job.

    States: RUNNING -> SUCCEEDED | RETRY_REQUESTED | FAILED.

    Handler errors never escape run(); storage errors do.
    """

    def __init__(
        self,
        store: JobStore,
        job_id: int,
        worker_name: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        fail_on_output: bool = False,
        registry: HandlerRegistry | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the executor.

        Args:
            store: The job store.
            job_id: Id of a job the worker already holds the lease on.
            worker_name: Identity of the executing worker.
            max_attempts: Attempts allowed before the job fails permanently.
            fail_on_output: Fail the attempt if the handler writes to stdout.
            registry: Handler registry used to rebuild the handler.
            metrics: Metrics collector.
        """
        self.store = store
        self.job_id = job_id
        self.worker_name = worker_name
        self.max_attempts = max_attempts
        self.fail_on_output = fail_on_output
        self.registry = registry or default_registry
        self.lease = Lease(store, job_id, worker_name)
        self.state = ExecutionState.RUNNING
        self._metrics = metrics or get_metrics()
        self._queue = "unknown"

    def run(self) -> bool:
        """
        Run this job.

        Returns:
            Whether or not the job succeeded.
        """
        start_time = time.monotonic()

        record = self.store.get_job(self.job_id)
        try:
            if record is None:
                raise HandlerResolutionError("job no longer exists")
            self._queue = record.queue
            handler = self.registry.deserialize(record.handler)
        except HandlerResolutionError as e:
            self._finish_with_error(f"Bad handler for job::{self.job_id}: {e}", handler=None)
            self._record(start_time)
            return False

        logger.info(
            "Executing job",
            extra={
                "job_id": self.job_id,
                "handler_type": handler.type_id,
                "attempt": record.attempts + 1,
                "max_attempts": self.max_attempts,
            },
        )

        with job_span(self.job_id, record.queue, record.attempts + 1, handler.type_id) as span:
            outcome = invoke_handler(handler, fail_on_output=self.fail_on_output)
            record_outcome(span, outcome)

        succeeded = self.resolve(outcome, handler, attempts_so_far=record.attempts)
        self._record(start_time)
        return succeeded

    def resolve(self, outcome: Outcome, handler: Handler, attempts_so_far: int) -> bool:
        """
        Apply a handler outcome to the job row.

        Args:
            outcome: What the handler invocation produced.
            handler: The handler that ran.
            attempts_so_far: Stored attempts before this run.

        Returns:
            Whether or not the job succeeded.
        """
        if isinstance(outcome, Success):
            self.lease.finish()
            self.state = ExecutionState.SUCCEEDED
            return True

        if isinstance(outcome, RetryRequested):
            # attempts hasn't been incremented yet
            attempt = attempts_so_far + 1
            msg = f'Retry requested "{outcome.message}" on attempt {attempt}/{self.max_attempts}.'

            if attempt >= self.max_attempts:
                self._finish_with_error(f"job::{self.job_id} {msg} Giving up.", handler)
                return False

            logger.warning(
                f"job::{self.job_id} {msg} Try again in {outcome.delay_seconds} seconds.",
                extra={"job_id": self.job_id},
            )
            self.lease.retry_later(outcome.delay_seconds)
            self.state = ExecutionState.RETRY_REQUESTED
            return False

        if isinstance(outcome, Failed):
            self._finish_with_error(outcome.message, handler)
            return False

        raise TypeError(f"Unknown outcome: {outcome!r}")

    def _finish_with_error(self, error: str, handler: Handler | None) -> None:
        attempts = self.lease.finish_with_error(self.max_attempts, error)
        self.state = ExecutionState.FAILED

        if handler is None or attempts != self.max_attempts:
            return

        on_retry_error = getattr(handler, "on_retry_error", None)
        if on_retry_error is None:
            return

        try:
            on_retry_error(error)
        except Exception:
            logger.exception(
                "Handler failure notification raised",
                extra={"job_id": self.job_id},
            )

    def _record(self, start_time: float) -> None:
        self._metrics.record_job_completed(
            queue=self._queue,
            status=self.state.value,
            duration_seconds=time.monotonic() - start_time,
        )
