"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from dbqueue.constants import (
    DEFAULT_JOBS_TABLE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_QUEUE,
    DEFAULT_SLEEP_SECONDS,
    CandidateOrder,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DBQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///dbqueue.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    jobs_table: str = DEFAULT_JOBS_TABLE

    # Worker Configuration
    worker_prefix: str = "worker"
    queue: str = DEFAULT_QUEUE
    worker_count: int = 0  # 0 = run forever
    worker_sleep_seconds: float = DEFAULT_SLEEP_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    fail_on_output: bool = False
    candidate_order: CandidateOrder = CandidateOrder.NEWEST_FIRST

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "dbqueue"
    prometheus_port: int | None = None
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
