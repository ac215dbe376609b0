"""
Job store for database operations.
Implements the data access patterns for the jobs table.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Engine,
    MetaData,
    and_,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Row
from sqlalchemy.sql.base import Executable

from dbqueue.constants import (
    CANDIDATE_BATCH_SIZE,
    DEFAULT_JOBS_TABLE,
    DEFAULT_QUEUE,
    CandidateOrder,
)
from dbqueue.db.connection import init_db
from dbqueue.db.models import JobRecord, build_jobs_table
from dbqueue.errors import EnqueueError
from dbqueue.types.job import QueueStatus

if TYPE_CHECKING:
    from dbqueue.worker.handlers import Handler

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobStore:
    """
    Store for jobs table operations.

    Every method runs in its own short transaction. The store keeps no
    in-process cache: the table is the single source of truth.

    Implements:
    - Single and bulk enqueue
    - Candidate selection for polling workers
    - Bulk lease release by worker identity
    - Queue status aggregation
    """

    def __init__(self, engine: Engine, table_name: str = DEFAULT_JOBS_TABLE):
        """
        Initialize the store.

        Args:
            engine: The database engine.
            table_name: Name of the jobs table.
        """
        self._engine = engine
        self.metadata = MetaData()
        self.table = build_jobs_table(self.metadata, table_name)

    @property
    def table_name(self) -> str:
        return self.table.name

    def init_schema(self) -> None:
        """Create the jobs table if it does not exist."""
        init_db(self._engine, self.metadata)

    def execute(self, statement: Executable) -> int:
        """
        Run a single data-modifying statement in its own transaction.

        Args:
            statement: The statement to run.

        Returns:
            Number of affected rows.
        """
        with self._engine.begin() as conn:
            result = conn.execute(statement)
            return result.rowcount

    def execute_returning(self, statement: Executable) -> Row[Any] | None:
        """
        Run a single UPDATE ... RETURNING statement in its own transaction.

        Args:
            statement: The statement to run.

        Returns:
            The returned row, or None if no row was affected.
        """
        with self._engine.begin() as conn:
            result = conn.execute(statement)
            return result.first()

    def enqueue(
        self,
        handler: "Handler",
        queue: str = DEFAULT_QUEUE,
        run_at: datetime | None = None,
    ) -> int:
        """
        Enqueue a job.

        Args:
            handler: The handler that will execute this job.
            queue: The queue to enqueue the job to.
            run_at: Earliest time the job may run. None means immediately.

        Returns:
            The new job's id.

        Raises:
            EnqueueError: If the insert affected no rows.
        """
        stmt = insert(self.table).values(
            handler=handler.serialize(),
            queue=queue,
            run_at=run_at,
            attempts=0,
            created_at=utcnow(),
        )

        with self._engine.begin() as conn:
            result = conn.execute(stmt)
            if result.rowcount < 1:
                logger.error("Failed to enqueue new job", extra={"queue": queue})
                raise EnqueueError("Failed to enqueue new job")
            job_id = result.inserted_primary_key[0]

        logger.info(
            "Enqueued job",
            extra={"job_id": job_id, "queue": queue, "handler_type": handler.type_id},
        )
        return job_id

    def bulk_enqueue(
        self,
        handlers: Iterable["Handler"],
        queue: str = DEFAULT_QUEUE,
        run_at: datetime | None = None,
    ) -> int:
        """
        Enqueue many jobs with a single multi-row insert.

        Args:
            handlers: Handlers to enqueue.
            queue: The queue to enqueue the handlers to.
            run_at: Earliest time the jobs may run.

        Returns:
            Number of rows inserted.

        Raises:
            EnqueueError: If nothing was inserted.
        """
        now = utcnow()
        rows = [
            {
                "handler": handler.serialize(),
                "queue": queue,
                "run_at": run_at,
                "attempts": 0,
                "created_at": now,
            }
            for handler in handlers
        ]
        if not rows:
            return 0

        with self._engine.begin() as conn:
            affected = conn.execute(insert(self.table).values(rows)).rowcount

        if affected < 1:
            logger.error("Failed to enqueue new jobs", extra={"queue": queue})
            raise EnqueueError("Failed to enqueue new jobs")
        if affected != len(rows):
            logger.error(
                "Failed to enqueue some new jobs",
                extra={"queue": queue, "requested": len(rows), "inserted": affected},
            )

        logger.info("Bulk enqueued jobs", extra={"queue": queue, "job_count": affected})
        return affected

    def get_job(self, job_id: int) -> JobRecord | None:
        """
        Get a job by id.

        Args:
            job_id: The job id.

        Returns:
            The JobRecord or None if not found.
        """
        stmt = select(self.table).where(self.table.c.id == job_id)
        with self._engine.connect() as conn:
            row = conn.execute(stmt).first()
        return JobRecord.from_row(row) if row is not None else None

    def find_candidates(
        self,
        queue: str,
        worker_name: str,
        max_attempts: int,
        order: CandidateOrder = CandidateOrder.NEWEST_FIRST,
        limit: int = CANDIDATE_BATCH_SIZE,
    ) -> list[int]:
        """
        Find ids of jobs the worker may try to lease.

        A worker may pick up a row it already holds the lease for.

        Args:
            queue: The queue to poll.
            worker_name: The polling worker's identity.
            max_attempts: Jobs with this many attempts are no longer eligible.
            order: Candidate ordering by creation time.
            limit: Maximum number of candidates.

        Returns:
            Candidate job ids.
        """
        t = self.table
        now = utcnow()
        if order == CandidateOrder.NEWEST_FIRST:
            ordering = (t.c.created_at.desc(), t.c.id.desc())
        else:
            ordering = (t.c.created_at.asc(), t.c.id.asc())

        stmt = (
            select(t.c.id)
            .where(
                and_(
                    t.c.queue == queue,
                    or_(t.c.run_at.is_(None), t.c.run_at <= now),
                    or_(t.c.locked_at.is_(None), t.c.locked_by == worker_name),
                    t.c.failed_at.is_(None),
                    t.c.attempts < max_attempts,
                )
            )
            .order_by(*ordering)
            .limit(limit)
        )

        with self._engine.connect() as conn:
            return list(conn.execute(stmt).scalars())

    def release_worker_locks(self, worker_name: str) -> int:
        """
        Release every lease held by a worker identity.

        Args:
            worker_name: The worker identity.

        Returns:
            Number of released leases.
        """
        stmt = (
            update(self.table)
            .where(self.table.c.locked_by == worker_name)
            .values(locked_at=None, locked_by=None)
        )
        count = self.execute(stmt)

        if count > 0:
            logger.info(
                f"Released {count} leases",
                extra={"worker_name": worker_name},
            )
        return count

    def status(self, queue: str = DEFAULT_QUEUE) -> QueueStatus:
        """
        Get row counts for a queue.

        Args:
            queue: The queue name.

        Returns:
            QueueStatus with total, failed, locked and outstanding counts.
        """
        t = self.table
        stmt = select(
            func.count(),
            func.count(t.c.failed_at),
            func.count(t.c.locked_at),
        ).where(t.c.queue == queue)

        with self._engine.connect() as conn:
            total, failed, locked = conn.execute(stmt).one()

        return QueueStatus.from_counts(total=total or 0, failed=failed or 0, locked=locked or 0)

    def list_failed(self, queue: str = DEFAULT_QUEUE, limit: int = 100) -> Sequence[JobRecord]:
        """
        List permanently failed jobs of a queue, most recent failure first.

        Args:
            queue: The queue name.
            limit: Maximum number of jobs to return.

        Returns:
            Failed job records.
        """
        t = self.table
        stmt = (
            select(t)
            .where(and_(t.c.queue == queue, t.c.failed_at.is_not(None)))
            .order_by(t.c.failed_at.desc())
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [JobRecord.from_row(row) for row in conn.execute(stmt)]

    def purge(self, queue: str | None = None) -> int:
        """
        Delete all jobs, or all jobs of one queue.

        Args:
            queue: Optional queue filter.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(self.table)
        if queue is not None:
            stmt = stmt.where(self.table.c.queue == queue)

        count = self.execute(stmt)
        logger.info(f"Purged {count} jobs", extra={"queue": queue})
        return count
