"""
Database connection management.
Handles SQLAlchemy engine creation and schema setup.
"""

import logging

from sqlalchemy import Engine, MetaData, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.pool import NullPool

from dbqueue.config import Settings

logger = logging.getLogger(__name__)


def create_db_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> Engine:
    """
    Create a database engine.

    SQLite connections are shared across worker threads, so same-thread
    checking is turned off and a longer busy timeout is used to ride out
    competing writers.

    Args:
        database_url: SQLAlchemy database URL.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Pool overflow (ignored for SQLite).
        echo: Whether to log all SQL statements.

    Returns:
        Engine: The SQLAlchemy engine instance.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        echo=echo,
        pool_pre_ping=True,
    )


def engine_from_settings(settings: Settings) -> Engine:
    """
    Create the engine described by the application settings.

    Args:
        settings: Application settings.

    Returns:
        Engine: The SQLAlchemy engine instance.
    """
    return create_db_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.log_level == "DEBUG",
    )


def get_test_engine(database_url: str) -> Engine:
    """
    Create a test database engine with NullPool.

    Args:
        database_url: The database URL for testing.

    Returns:
        Engine: The test SQLAlchemy engine instance.
    """
    connect_args = {}
    if make_url(database_url).get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(
        database_url,
        poolclass=NullPool,
        connect_args=connect_args,
        echo=False,
    )


def init_db(engine: Engine, metadata: MetaData) -> None:
    """
    Create any missing tables described by the metadata.

    Args:
        engine: The engine to create tables on.
        metadata: Metadata holding the jobs table.
    """
    metadata.create_all(engine)
    logger.info(
        "Database schema initialized",
        extra={"tables": sorted(metadata.tables)},
    )
