"""
Centralized settings for Cadence.

All fields can be set via ``CADENCE_*`` environment variables (e.g.
``CADENCE_TIMEZONE=Europe/Berlin``) or a ``.env`` file.  Values are
validated once at startup; :func:`get_settings` caches the result.

Fields
──────
timezone                  : Reference timezone for due-time evaluation
schedule_module           : ``package.module:function`` registering tasks
lock_backend              : ``memory`` (single process) or ``sqlite`` (shared)
lock_database             : SQLite file for the shared lock store
lock_max_runtime_seconds  : Default lock TTL for without-overlapping tasks
max_workers               : Background worker pool size
tick_interval_seconds     : Interval of ``cadence schedule work``
maintenance_file          : Marker file; while it exists, maintenance mode is on
mail_*                    : SMTP settings for emailed task output
log_level / log_format    : structlog configuration
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCK_BACKENDS = ("memory", "sqlite")
LOG_FORMATS = ("console", "json")


class CadenceSettings(BaseSettings):
    """Cadence configuration (``CADENCE_`` prefix)."""

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Evaluation ───────────────────────────────────────────────
    timezone: str = Field(default="UTC", description="IANA timezone used for due-time evaluation")
    schedule_module: str | None = Field(default=None, description="package.module:function")
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    maintenance_file: Path | None = Field(default=None)

    # ── Locks ────────────────────────────────────────────────────
    lock_backend: str = Field(default="memory")
    lock_database: Path = Field(default_factory=lambda: Path.home() / ".cadence" / "locks.db")
    lock_max_runtime_seconds: int = Field(default=24 * 60 * 60, gt=0)

    # ── Execution ────────────────────────────────────────────────
    max_workers: int = Field(default=4, gt=0)

    # ── Mail ─────────────────────────────────────────────────────
    mail_host: str | None = Field(default=None)
    mail_port: int = Field(default=587)
    mail_username: str | None = Field(default=None)
    mail_password: str | None = Field(default=None)
    mail_use_tls: bool = Field(default=True)
    mail_from_address: str = Field(default="scheduler@localhost")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("lock_backend")
    @classmethod
    def _check_lock_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in LOCK_BACKENDS:
            raise ValueError(f"lock_backend must be one of {LOCK_BACKENDS}, got {value!r}")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {value!r}")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def mail_configured(self) -> bool:
        return bool(self.mail_host)


@lru_cache(maxsize=1)
def get_settings() -> CadenceSettings:
    """Return the process-wide settings, loaded on first use."""
    return CadenceSettings()


def clear_settings_cache() -> None:
    """Forget cached settings (tests and CLI option overrides)."""
    get_settings.cache_clear()
