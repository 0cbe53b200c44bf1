"""Runtime configuration, environment-driven via pydantic-settings.

Every setting can be overridden with a ``STAKESYNC_``-prefixed environment
variable (e.g. ``STAKESYNC_MAX_RETRIES=5``) or a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stakesync.core.models import DAY_MS, WEEK_MS


class SyncSettings(BaseSettings):
    """Settings for the offline queue and its sync engine."""

    model_config = SettingsConfigDict(
        env_prefix="STAKESYNC_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Retry policy
    max_retries: int = Field(default=3, ge=1)

    # Triggers (seconds)
    reconnect_grace_seconds: float = Field(default=1.0, gt=0)
    sync_interval_seconds: float = Field(default=300.0, gt=0)
    startup_delay_seconds: float = Field(default=2.0, ge=0)
    probe_interval_seconds: float = Field(default=5.0, gt=0)

    # Connectivity probe; empty host means push-only (report() from the platform)
    probe_host: str = ""
    probe_port: int = Field(default=53, gt=0, lt=65536)
    probe_timeout_seconds: float = Field(default=3.0, gt=0)

    # Retention (milliseconds)
    snapshot_ttl_ms: int = Field(default=DAY_MS, gt=0)
    snapshot_purge_age_ms: int = Field(default=WEEK_MS, gt=0)
    queue_max_age_ms: int = Field(default=DAY_MS, gt=0)
    cleanup_interval_seconds: float = Field(default=24 * 60 * 60.0, gt=0)

    # Storage
    storage_backend: Literal["memory", "file", "redis"] = "file"
    storage_path: Path = Path(".stakesync")
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "stakesync"
    persist_abandoned: bool = False

    # Observability
    log_level: str = "INFO"

    @field_validator("key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("key_prefix must not be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v!r}")
        return v

    def key(self, record: str) -> str:
        """Medium key for one of the persisted records."""
        return f"{self.key_prefix}_{record}"


@lru_cache
def get_settings() -> SyncSettings:
    return SyncSettings()
