"""Application settings and configuration.

This module defines all configuration options for the Idle Counter service.
Settings are loaded from environment variables with sensible defaults.
"""

from datetime import timedelta
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Idle Counter", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Database configuration
    database_url: str = Field(default="sqlite:///./idle_counter.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    auto_create_tables: bool = Field(default=True, alias="AUTO_CREATE_TABLES")

    # Redis configuration for the expiring inactivity lease
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Counter store and idleness detection
    counter_store_backend: Literal["sql", "memory"] = Field(
        default="sql", alias="COUNTER_STORE_BACKEND"
    )
    idleness_strategy: Literal["poll", "lease"] = Field(default="poll", alias="IDLENESS_STRATEGY")
    lease_backend: Literal["memory", "redis"] = Field(default="memory", alias="LEASE_BACKEND")
    lease_key_prefix: str = Field(default="counter:idle:", alias="LEASE_KEY_PREFIX")
    counter_idle_window_seconds: int = Field(
        default=1200, gt=0, alias="COUNTER_IDLE_WINDOW_SECONDS"
    )
    idle_poll_interval_seconds: float = Field(
        default=60.0, gt=0, alias="IDLE_POLL_INTERVAL_SECONDS"
    )
    idle_retry_seconds: float = Field(default=5.0, gt=0, alias="IDLE_RETRY_SECONDS")

    # Optimistic concurrency retry budget
    mutation_max_attempts: int = Field(default=8, ge=1, alias="MUTATION_MAX_ATTEMPTS")
    mutation_retry_backoff_seconds: float = Field(
        default=0.01, ge=0, alias="MUTATION_RETRY_BACKOFF_SECONDS"
    )

    # Change notification fan-out
    notify_queue_size: int = Field(default=100, ge=1, alias="NOTIFY_QUEUE_SIZE")
    notify_reorder_window_seconds: float = Field(
        default=0.5, ge=0, alias="NOTIFY_REORDER_WINDOW_SECONDS"
    )
    notify_backend: Literal["memory", "redis"] = Field(default="memory", alias="NOTIFY_BACKEND")
    notify_channel: str = Field(default="counter:events", alias="NOTIFY_CHANNEL")

    # Inbound reset trigger authentication
    reset_secret: str | None = Field(default=None, alias="RESET_SECRET")
    reset_jwt_algorithm: str = Field(default="HS256", alias="RESET_JWT_ALGORITHM")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def idle_window(self) -> timedelta:
        """Return the inactivity window as a timedelta."""
        return timedelta(seconds=self.counter_idle_window_seconds)


settings = Settings()
