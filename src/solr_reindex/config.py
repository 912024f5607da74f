"""Application configuration and settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = "Solr Reindex API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API
    api_v1_prefix: str = "/api/v1"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_credentials: bool = True
    cors_methods: list[str] = ["*"]
    cors_headers: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"

    # Solr Configuration
    solr_source_url: str = "http://localhost:8983/solr"
    solr_target_url: str | None = None  # Defaults to the source cluster
    solr_username: str | None = None
    solr_password: str | None = None
    solr_request_timeout: float = 30.0  # Per-call timeout in seconds

    # Job Registry Configuration
    registry_backend: Literal["memory", "file", "supabase"] = "file"
    registry_path: str = ".reindex-jobs"  # Directory for the file backend
    supabase_url: str | None = None
    supabase_key: str | None = None  # Service role key (not anon key!)
    supabase_table: str = "reindex_job"

    # Execution Configuration
    execution_backend: Literal["process", "task"] = "process"
    liveness_timeout_seconds: float = 300.0  # Worker considered lost after this much silence
    monitor_interval_seconds: float = 5.0  # How often running executions are reconciled
    worker_shutdown_timeout: int = 30  # Graceful shutdown timeout

    # Job Defaults
    default_batch_size: int = 500
    default_max_retries: int = 3
    default_backoff_initial_seconds: float = 0.25
    default_backoff_max_seconds: float = 5.0

    @property
    def effective_target_url(self) -> str:
        """Target cluster URL, falling back to the source cluster."""
        return self.solr_target_url or self.solr_source_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
