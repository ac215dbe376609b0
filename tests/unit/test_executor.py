"""
Unit tests for the job executor.
"""

from sqlalchemy import insert, update

from dbqueue.constants import ExecutionState
from dbqueue.db import JobStore, utcnow
from dbqueue.types.job import Failed, RetryRequested, Success
from dbqueue.worker.executor import JobExecutor
from tests.handlers import (
    AlwaysRetryJob,
    FailingJob,
    HelloWorldJob,
    RetryOnceJob,
    ReturnsFailureJob,
)


def make_executor(store, registry, metrics, lease, **kwargs) -> JobExecutor:
    """Build an executor for a job already leased by the lease's worker."""
    return JobExecutor(
        store=store,
        job_id=lease.job_id,
        worker_name=lease.worker_name,
        registry=registry,
        metrics=metrics,
        **kwargs,
    )


class TestRun:
    """Tests for running a leased job end to end."""

    def test_success_deletes_job(self, store: JobStore, registry, metrics, leased_job):
        """Test that a successful run removes the row."""
        lease = leased_job(HelloWorldJob())
        executor = make_executor(store, registry, metrics, lease)

        assert executor.run() is True

        assert executor.state == ExecutionState.SUCCEEDED
        assert store.get_job(lease.job_id) is None

    def test_failure_below_threshold(self, store: JobStore, registry, metrics, leased_job, handler_log):
        """Test that a raising handler consumes an attempt and releases the lease."""
        lease = leased_job(FailingJob())
        executor = make_executor(store, registry, metrics, lease, max_attempts=3)

        assert executor.run() is False

        job = store.get_job(lease.job_id)
        assert executor.state == ExecutionState.FAILED
        assert job.attempts == 1
        assert job.failed_at is None
        assert job.locked_by is None
        assert handler_log.notifications == []

    def test_failure_at_threshold_notifies(self, store: JobStore, registry, metrics, leased_job, handler_log):
        """Test that the last allowed failure marks the job failed and notifies the handler."""
        lease = leased_job(FailingJob())
        executor = make_executor(store, registry, metrics, lease, max_attempts=1)

        assert executor.run() is False

        job = store.get_job(lease.job_id)
        assert job.attempts == 1
        assert job.failed_at is not None
        assert job.error == "Uh oh"
        assert handler_log.notifications == [("failing", "Uh oh")]

    def test_retry_requested(self, store: JobStore, registry, metrics, leased_job):
        """Test that a retry request reschedules the job without failing it."""
        lease = leased_job(RetryOnceJob(key="a", delay_seconds=3600))
        executor = make_executor(store, registry, metrics, lease, max_attempts=3)
        before = utcnow()

        assert executor.run() is False

        job = store.get_job(lease.job_id)
        assert executor.state == ExecutionState.RETRY_REQUESTED
        assert job.attempts == 1
        assert job.failed_at is None
        assert job.error is None
        assert job.locked_by is None
        assert job.run_at >= before

    def test_retry_exhausted(self, store: JobStore, registry, metrics, leased_job, handler_log):
        """Test that a retry request on the last attempt gives up."""
        lease = leased_job(AlwaysRetryJob())
        executor = make_executor(store, registry, metrics, lease, max_attempts=1)

        assert executor.run() is False

        job = store.get_job(lease.job_id)
        assert executor.state == ExecutionState.FAILED
        assert job.failed_at is not None
        assert job.error == (
            f'job::{lease.job_id} Retry requested "still waiting" on attempt 1/1. Giving up.'
        )
        assert handler_log.notifications == [("always_retry", job.error)]

    def test_returned_failure(self, store: JobStore, registry, metrics, leased_job):
        """Test that a handler can fail by returning an outcome."""
        lease = leased_job(ReturnsFailureJob(reason="no such user"))
        executor = make_executor(store, registry, metrics, lease, max_attempts=1)

        assert executor.run() is False

        assert store.get_job(lease.job_id).error == "no such user"

    def test_unexpected_output(self, store: JobStore, registry, metrics, leased_job):
        """Test that printing fails the attempt when output is forbidden."""
        lease = leased_job(HelloWorldJob(name="stdout"))
        executor = make_executor(store, registry, metrics, lease, max_attempts=1, fail_on_output=True)

        assert executor.run() is False

        job = store.get_job(lease.job_id)
        assert job.failed_at is not None
        assert "Hello stdout!" in job.error

    def test_bad_payload(self, store: JobStore, registry, metrics):
        """Test that an unknown handler type fails the job without raising."""
        job_id = store.execute_returning(
            insert(store.table)
            .values(handler="no_such_type:{}", queue="default", attempts=0, created_at=utcnow())
            .returning(store.table.c.id)
        ).id
        executor = JobExecutor(store, job_id, "tester", max_attempts=1, registry=registry, metrics=metrics)
        executor.lease.acquire()

        assert executor.run() is False

        job = store.get_job(job_id)
        assert executor.state == ExecutionState.FAILED
        assert job.failed_at is not None
        assert job.error.startswith(f"Bad handler for job::{job_id}:")
        assert "no_such_type" in job.error

    def test_records_metrics(self, store: JobStore, registry, metrics, leased_job):
        """Test that each resolution is counted by queue and state."""
        lease = leased_job(HelloWorldJob())
        make_executor(store, registry, metrics, lease).run()

        value = metrics._registry.get_sample_value(
            "dbqueue_jobs_completed_total",
            {"queue": "default", "status": "succeeded"},
        )
        assert value == 1.0


class TestResolve:
    """Tests for applying outcomes directly."""

    def test_success(self, store: JobStore, registry, metrics, leased_job):
        """Test that Success finishes the job."""
        lease = leased_job(HelloWorldJob())
        executor = make_executor(store, registry, metrics, lease)

        assert executor.resolve(Success(), HelloWorldJob(), attempts_so_far=0) is True
        assert store.get_job(lease.job_id) is None

    def test_retry_on_final_attempt_fails(self, store: JobStore, registry, metrics, leased_job, handler_log):
        """Test that a retry requested on the final allowed attempt fails the job."""
        lease = leased_job(AlwaysRetryJob())
        store.execute(
            update(store.table).where(store.table.c.id == lease.job_id).values(attempts=2)
        )
        executor = make_executor(store, registry, metrics, lease, max_attempts=3)

        outcome = RetryRequested(delay_seconds=0, message="later")
        assert executor.resolve(outcome, AlwaysRetryJob(), attempts_so_far=2) is False

        job = store.get_job(lease.job_id)
        expected_error = f'job::{lease.job_id} Retry requested "later" on attempt 3/3. Giving up.'
        assert executor.state == ExecutionState.FAILED
        assert job.attempts == 3
        assert job.failed_at is not None
        assert job.error == expected_error
        assert job.locked_by is None
        assert handler_log.notifications == [("always_retry", expected_error)]

    def test_notification_error_is_contained(self, store: JobStore, registry, metrics, leased_job):
        """Test that a raising failure notification does not escape."""
        lease = leased_job(HelloWorldJob())
        executor = make_executor(store, registry, metrics, lease, max_attempts=1)

        class Noisy(HelloWorldJob):
            def on_retry_error(self, error: str) -> None:
                raise RuntimeError("notification broke")

        assert executor.resolve(Failed(message="boom"), Noisy(), attempts_so_far=0) is False
        assert store.get_job(lease.job_id).failed_at is not None
