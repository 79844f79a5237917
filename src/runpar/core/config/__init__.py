"""Configuration: ambient settings and the frozen per-run configuration.

Quick start::

    from runpar.core.config import build_config

    config = build_config(command="gzip {}", jobs="4", keep_order=True)
    config.jobs       # 4
    config.ordering   # OrderingMode.INPUT_ORDER

Architecture::

    settings.py   RunparSettings (pydantic-settings, RUNPAR_* env) + cache
    run.py        RunConfig (frozen) + build_config() + value parsers
"""

from .run import (
    OrderingMode,
    RunConfig,
    build_config,
    parse_count,
    parse_memory,
    parse_seconds,
)
from .settings import RunparSettings, clear_settings_cache, get_settings

__all__ = [
    "OrderingMode",
    "RunConfig",
    "RunparSettings",
    "build_config",
    "clear_settings_cache",
    "get_settings",
    "parse_count",
    "parse_memory",
    "parse_seconds",
]
