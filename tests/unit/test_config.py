"""
Unit tests for settings and the command-line entry points.
"""

import json
import sys

from dbqueue import status as status_module
from dbqueue.config import Settings
from dbqueue.constants import CandidateOrder
from dbqueue.db import JobStore, engine_from_settings


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        """Test the documented defaults."""
        for name in ("DBQUEUE_QUEUE", "DBQUEUE_MAX_ATTEMPTS", "DBQUEUE_WORKER_COUNT"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.queue == "default"
        assert settings.jobs_table == "jobs"
        assert settings.max_attempts == 5
        assert settings.worker_count == 0
        assert settings.worker_sleep_seconds == 5.0
        assert settings.fail_on_output is False
        assert settings.candidate_order == CandidateOrder.NEWEST_FIRST

    def test_environment_overrides(self, monkeypatch):
        """Test settings are read from DBQUEUE_ variables."""
        monkeypatch.setenv("DBQUEUE_QUEUE", "emails")
        monkeypatch.setenv("DBQUEUE_MAX_ATTEMPTS", "2")
        monkeypatch.setenv("DBQUEUE_CANDIDATE_ORDER", "oldest_first")

        settings = Settings(_env_file=None)

        assert settings.queue == "emails"
        assert settings.max_attempts == 2
        assert settings.candidate_order == CandidateOrder.OLDEST_FIRST


class TestEntryPoints:
    """Tests for settings-driven engine creation and the status command."""

    def test_engine_from_settings(self, tmp_path):
        """Test a store works on an engine built from settings."""
        settings = Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'settings.db'}")
        engine = engine_from_settings(settings)
        try:
            store = JobStore(engine, table_name=settings.jobs_table)
            store.init_schema()

            assert store.status().total == 0
        finally:
            engine.dispose()

    def test_status_command(self, tmp_path, monkeypatch, capsys):
        """Test the status command prints the queue counts as JSON."""
        settings = Settings(
            _env_file=None,
            database_url=f"sqlite:///{tmp_path / 'status.db'}",
            log_format="console",
        )
        engine = engine_from_settings(settings)
        JobStore(engine, table_name=settings.jobs_table).init_schema()
        engine.dispose()

        monkeypatch.setattr(status_module, "get_settings", lambda: settings)
        monkeypatch.setattr(sys, "argv", ["dbqueue-status", "emails"])

        status_module.main()

        printed = json.loads(capsys.readouterr().out)
        assert printed == {"total": 0, "failed": 0, "locked": 0, "outstanding": 0}
