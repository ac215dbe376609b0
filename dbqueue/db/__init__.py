"""
Database module.
Contains database connection, the jobs table, and the job store.
"""

from dbqueue.db.connection import (
    create_db_engine,
    engine_from_settings,
    get_test_engine,
    init_db,
)
from dbqueue.db.models import JobRecord, build_jobs_table
from dbqueue.db.store import JobStore, utcnow

__all__ = [
    "create_db_engine",
    "engine_from_settings",
    "get_test_engine",
    "init_db",
    "JobRecord",
    "build_jobs_table",
    "JobStore",
    "utcnow",
]
