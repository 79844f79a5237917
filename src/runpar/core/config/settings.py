"""
Ambient settings for runpar.

:class:`RunparSettings` holds the values that are not job-specific but
tune how the engine behaves: logging, the kill grace period, the
supervision poll slice and the admission backoff schedule. They are read
from ``RUNPAR_*`` environment variables (and a ``.env`` file) so that a
deployment can tune them without touching every command line. Explicit
CLI flags always win.

Example::

    RUNPAR_GRACE_PERIOD=2 RUNPAR_LOG_LEVEL=DEBUG runpar echo ::: a b
"""

from __future__ import annotations

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_jobs() -> int:
    """Default worker count: one slot per CPU core."""
    return os.cpu_count() or 1


class RunparSettings(BaseSettings):
    """Environment-backed defaults for the CLI and the engine."""

    model_config = SettingsConfigDict(
        env_prefix="RUNPAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="WARNING")
    log_format: str = Field(default="console", description="console | json")

    # ── Execution ────────────────────────────────────────────────
    jobs: int = Field(default_factory=default_jobs, ge=1)
    grace_period: float = Field(default=5.0, ge=0, description="Seconds between SIGTERM and SIGKILL")
    poll_interval: float = Field(default=0.05, gt=0, description="Supervision slice in seconds")

    # ── Admission backoff ────────────────────────────────────────
    backoff_base: float = Field(default=0.05, gt=0)
    backoff_max: float = Field(default=1.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {value!r}")
        return value


_settings_cache: RunparSettings | None = None


def get_settings(*, _force_reload: bool = False) -> RunparSettings:
    """Load, validate, and cache a :class:`RunparSettings` instance."""
    global _settings_cache
    if _settings_cache is None or _force_reload:
        _settings_cache = RunparSettings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    global _settings_cache
    _settings_cache = None
