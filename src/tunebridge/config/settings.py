"""Application settings loaded from environment variables.

Hey future me - every knob of the engine lives here. Settings are grouped the
same way the code is layered: database, conversion pool, follow/sync loop,
notifier, observability. Each group reads its own env prefix, so
CONVERSION_WORKER_COUNT=20 only touches the worker pool.

Use get_settings() everywhere - it's cached, so the env is parsed once per
process. Tests build Settings(...) directly instead.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./tunebridge.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")
    pool_pre_ping: bool = Field(default=True)
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)


class ConversionSettings(BaseSettings):
    """Matching worker pool and cache lifetimes."""

    model_config = SettingsConfigDict(env_prefix="CONVERSION_", extra="ignore")

    worker_count: int = Field(
        default=10, ge=1, le=100, description="Parallel matching workers per playlist"
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Deadline for the whole matching stage (None = no deadline)",
    )
    track_cache_ttl: int = Field(
        default=86400, ge=0, description="Lifetime of single-track cache entries"
    )


class FollowSettings(BaseSettings):
    """Follow subscriptions and the recurring sync pass."""

    model_config = SettingsConfigDict(env_prefix="FOLLOW_", extra="ignore")

    # Can only lower the hard cap of 20 that FollowRecord enforces.
    max_subscribers: int = Field(default=20, ge=1, le=20)
    sync_interval_seconds: int = Field(
        default=900, ge=1, description="Seconds between sync passes"
    )
    min_resync_seconds: int = Field(
        default=600,
        ge=0,
        description="A follow touched more recently than this is skipped by the pass",
    )
    failed_retry_after_seconds: int = Field(
        default=86400,
        ge=0,
        description="Failed follows are retried only after this cool-down",
    )
    task_retention_seconds: int = Field(
        default=3600, ge=0, description="Dedup window for enqueued sync tasks"
    )
    task_max_retries: int = Field(default=3, ge=0)
    # Off by default: every pass mints a fresh dedup key, so the same entity can
    # be enqueued twice inside one retention window.
    dedupe_by_entity: bool = Field(
        default=False,
        description="Derive the sync task dedup key from the entity id",
    )


class NotifierSettings(BaseSettings):
    """Outbound event delivery."""

    model_config = SettingsConfigDict(env_prefix="NOTIFIER_", extra="ignore")

    webhook_url: str = Field(default="", description="Event webhook endpoint")
    auth_header: str = Field(default="", description="Authorization header value")
    timeout: float = Field(default=10.0, gt=0)

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.webhook_url.strip())


class ObservabilitySettings(BaseSettings):
    """Logging output settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_", extra="ignore")

    log_json_format: bool = Field(default=False)


class Settings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = Field(default="tunebridge")
    log_level: str = Field(default="INFO")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    conversion: ConversionSettings = Field(default_factory=ConversionSettings)
    follow: FollowSettings = Field(default_factory=FollowSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Reject unknown log levels early instead of silently logging at INFO."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = value.upper()
        if upper not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}, got {value!r}")
        return upper

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite file path, or None for non-file databases."""
        url = self.database.url
        if not url.startswith("sqlite") or ":memory:" in url:
            return None
        _, _, path = url.partition(":///")
        return Path(path) if path else None


# Yo, lru_cache makes this a process-wide singleton. If a test mutates env vars
# it must call get_settings.cache_clear() or it keeps seeing the old values.
@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
