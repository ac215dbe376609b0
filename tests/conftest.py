"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import Callable, Generator
from typing import Any

import pytest
from prometheus_client import CollectorRegistry
from sqlalchemy import Engine

from dbqueue.config import Settings
from dbqueue.db import JobStore, get_test_engine
from dbqueue.lease import Lease
from dbqueue.observability.metrics import MetricsCollector
from dbqueue.worker.handlers import Handler, HandlerRegistry
from dbqueue.worker.main import Worker
from tests.handlers import HandlerLog, handler_registry

# Optional external test database; defaults to a per-test SQLite file
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

TEST_JOBS_TABLE = "test_jobs"


# ============================================================================
# Handler fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def handler_log() -> Generator[type[HandlerLog]]:
    """Reset handler side effects around each test."""
    HandlerLog.reset()
    yield HandlerLog
    HandlerLog.reset()


@pytest.fixture
def registry() -> HandlerRegistry:
    """Get the registry holding the test handlers."""
    return handler_registry


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'dbqueue_test.db'}"


@pytest.fixture
def engine(database_url: str) -> Generator[Engine]:
    """Create a database engine for tests."""
    engine = get_test_engine(database_url)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine: Engine) -> Generator[JobStore]:
    """Create a job store on a clean jobs table."""
    store = JobStore(engine, table_name=TEST_JOBS_TABLE)
    store.init_schema()
    store.purge()

    yield store

    store.metadata.drop_all(engine)


@pytest.fixture
def metrics() -> MetricsCollector:
    """Create a metrics collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite://",
        jobs_table=TEST_JOBS_TABLE,
        worker_prefix="test",
        worker_count=1,
        worker_sleep_seconds=0,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def make_worker(
    store: JobStore,
    registry: HandlerRegistry,
    metrics: MetricsCollector,
    test_settings: Settings,
) -> Callable[..., Worker]:
    """Factory for workers bound to the test store."""

    def factory(**kwargs: Any) -> Worker:
        kwargs.setdefault("worker_prefix", "test")
        kwargs.setdefault("sleep", 0)
        return Worker(
            store,
            registry=registry,
            metrics=metrics,
            settings=test_settings,
            **kwargs,
        )

    return factory


@pytest.fixture
def leased_job(store: JobStore, registry: HandlerRegistry) -> Callable[..., Lease]:
    """Factory that enqueues a handler and leases it for "tester"."""

    def factory(handler: Handler, worker_name: str = "tester") -> Lease:
        job_id = store.enqueue(handler)
        lease = Lease(store, job_id, worker_name)
        assert lease.acquire() is True
        return lease

    return factory
