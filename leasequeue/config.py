"""
Queue configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from leasequeue.constants import (
    ARCHIVE_SUFFIX,
    DEFAULT_ATTEMPTS,
    DEFAULT_COLLECTION,
    DEFAULT_DATABASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """
    Queue settings loaded from environment variables.

    Instances are immutable: build one at startup and hand the same value
    to every queue, reaper and worker that needs it.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEASEQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Store
    database: str = DEFAULT_DATABASE_URL
    collection: str = DEFAULT_COLLECTION
    pool_size: int = 10
    max_overflow: int = 20
    echo_sql: bool = False

    # Lease protocol
    attempts: int = DEFAULT_ATTEMPTS
    timeout: int = DEFAULT_TIMEOUT_SECONDS

    # Reaper Configuration
    reaper_interval_seconds: int = 10
    reaper_purge: bool = True

    # Worker Configuration
    worker_id: str | None = None
    worker_poll_interval_seconds: float = 1.0
    worker_heartbeat_interval_seconds: float = 10.0
    worker_retry_delay_seconds: float = 30.0

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "leasequeue"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    @property
    def archive_collection(self) -> str:
        """Name of the table exhausted jobs are purged into."""
        return f"{self.collection}{ARCHIVE_SUFFIX}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
