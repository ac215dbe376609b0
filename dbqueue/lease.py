"""
Lease protocol for a single job row.

Every operation is one conditional statement against the jobs table. The
store's single-statement atomicity is the only synchronization between
workers: there are no application-level locks.
"""

import logging
from datetime import timedelta

from sqlalchemy import and_, case, delete, literal, or_, update

from dbqueue.db.store import JobStore, utcnow

logger = logging.getLogger(__name__)


class Lease:
    """
    A worker's handle on one job row.

    Lease contention is an expected outcome, reported as False from
    acquire(), never as an error. Storage errors propagate to the caller.
    """

    def __init__(self, store: JobStore, job_id: int, worker_name: str):
        self.store = store
        self.job_id = job_id
        self.worker_name = worker_name

    def acquire(self) -> bool:
        """
        Try to take the lease on this job.

        A worker may re-acquire a row it already holds. Permanently failed
        rows are never leased.

        Returns:
            True if this worker now holds the lease.
        """
        t = self.store.table
        logger.debug(
            "Attempting to acquire lease",
            extra={"job_id": self.job_id, "worker_name": self.worker_name},
        )

        stmt = (
            update(t)
            .where(
                and_(
                    t.c.id == self.job_id,
                    or_(t.c.locked_at.is_(None), t.c.locked_by == self.worker_name),
                    t.c.failed_at.is_(None),
                )
            )
            .values(locked_at=utcnow(), locked_by=self.worker_name)
        )

        if self.store.execute(stmt) != 1:
            logger.debug(
                "Failed to acquire lease",
                extra={"job_id": self.job_id, "worker_name": self.worker_name},
            )
            return False

        logger.info(
            "Acquired lease",
            extra={"job_id": self.job_id, "worker_name": self.worker_name},
        )
        return True

    def release(self) -> bool:
        """
        Release the lease if this worker still holds it.

        Returns:
            True if a lease was released, False if there was nothing to release.
        """
        t = self.store.table
        stmt = (
            update(t)
            .where(and_(t.c.id == self.job_id, t.c.locked_by == self.worker_name))
            .values(locked_at=None, locked_by=None)
        )
        return self.store.execute(stmt) == 1

    def finish(self) -> bool:
        """
        Delete the job after a successful run.

        Returns:
            True if the row was deleted.
        """
        t = self.store.table
        deleted = self.store.execute(delete(t).where(t.c.id == self.job_id)) == 1
        if deleted:
            logger.info("Completed job", extra={"job_id": self.job_id})
        return deleted

    def finish_with_error(self, max_attempts: int, error: str) -> int | None:
        """
        Record a failed attempt and release the lease.

        The increment and the max_attempts check happen in the same statement,
        so the decision never rests on a stale read of attempts. The job is
        marked failed when the new attempts count reaches max_attempts.

        Args:
            max_attempts: Attempt budget of the executing worker.
            error: The error message, stored only on permanent failure.

        Returns:
            The new attempts count, or None if the row is gone or already failed.
        """
        t = self.store.table
        new_attempts = t.c.attempts + 1
        exhausted = new_attempts >= max_attempts

        stmt = (
            update(t)
            .where(and_(t.c.id == self.job_id, t.c.failed_at.is_(None)))
            .values(
                attempts=new_attempts,
                failed_at=case((exhausted, literal(utcnow(), t.c.failed_at.type)), else_=t.c.failed_at),
                error=case((exhausted, literal(error, t.c.error.type)), else_=t.c.error),
                locked_at=None,
                locked_by=None,
            )
            .returning(t.c.attempts, t.c.failed_at)
        )
        row = self.store.execute_returning(stmt)

        logger.error(
            "Failure in job",
            extra={"job_id": self.job_id, "error": error},
        )

        if row is None:
            return None
        if row.failed_at is not None:
            logger.warning(
                f"Job failed permanently after {row.attempts} attempts",
                extra={"job_id": self.job_id},
            )
        return row.attempts

    def retry_later(self, delay_seconds: int) -> int | None:
        """
        Reschedule the job, consume one attempt, and release the lease.

        Leaves failed_at and error untouched: a requested retry is not a
        failure.

        Args:
            delay_seconds: Seconds from now before the job is eligible again.

        Returns:
            The new attempts count, or None if the row is gone or already failed.
        """
        t = self.store.table
        stmt = (
            update(t)
            .where(and_(t.c.id == self.job_id, t.c.failed_at.is_(None)))
            .values(
                run_at=utcnow() + timedelta(seconds=delay_seconds),
                attempts=t.c.attempts + 1,
                locked_at=None,
                locked_by=None,
            )
            .returning(t.c.attempts)
        )
        row = self.store.execute_returning(stmt)
        return row.attempts if row is not None else None
