"""
Jobs table definition.

The table name is chosen per store, so the table is built by a factory on a
caller-owned MetaData instead of a single declarative class.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

from dbqueue.constants import DEFAULT_JOBS_TABLE, DEFAULT_QUEUE


def build_jobs_table(metadata: MetaData, name: str = DEFAULT_JOBS_TABLE) -> Table:
    """
    Define the jobs table on the given metadata.

    Key constraints:
    - locked_at and locked_by are always written together
    - failed_at is only ever written together with error
    - attempts only grows, one per non-success resolution

    Args:
        metadata: The MetaData the table is attached to.
        name: The table name.

    Returns:
        The jobs Table.
    """
    return Table(
        name,
        metadata,
        Column(
            "id",
            BigInteger().with_variant(Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        Column("handler", Text, nullable=False),
        Column("queue", String(255), nullable=False, default=DEFAULT_QUEUE),
        Column("attempts", Integer, nullable=False, default=0),
        Column("run_at", DateTime, nullable=True),
        Column("locked_at", DateTime, nullable=True),
        Column("locked_by", String(255), nullable=True),
        Column("failed_at", DateTime, nullable=True),
        Column("error", Text, nullable=True),
        Column("created_at", DateTime, nullable=False),
        # Index for queue polling and status counts
        Index(f"ix_{name}_queue_poll", "queue", "failed_at", "run_at", "created_at"),
        # Index for bulk lease release by worker
        Index(f"ix_{name}_locked_by", "locked_by"),
    )


@dataclass
class JobRecord:
    """
    Snapshot of one row of the jobs table.

    Records are read-only views; every mutation goes through the lease
    protocol or the store.
    """

    id: int
    handler: str
    queue: str
    attempts: int
    run_at: datetime | None
    locked_at: datetime | None
    locked_by: str | None
    failed_at: datetime | None
    error: str | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: Any) -> "JobRecord":
        return cls(
            id=row.id,
            handler=row.handler,
            queue=row.queue,
            attempts=row.attempts,
            run_at=row.run_at,
            locked_at=row.locked_at,
            locked_by=row.locked_by,
            failed_at=row.failed_at,
            error=row.error,
            created_at=row.created_at,
        )

    @property
    def is_failed(self) -> bool:
        """Check if the job has permanently failed."""
        return self.failed_at is not None

    @property
    def is_locked(self) -> bool:
        """Check if some worker currently holds the lease."""
        return self.locked_at is not None

    def __repr__(self) -> str:
        return (
            f"JobRecord(id={self.id}, queue={self.queue}, "
            f"attempts={self.attempts}, locked_by={self.locked_by}, "
            f"failed={self.is_failed})"
        )
