"""
runpar logging - structured diagnostics with structlog.

Job output owns stdout. Everything this module configures writes to
stderr so diagnostics never interleave with the bytes a user pipes into
the next program.

Architecture:
    ::

        configure_logging(level="WARNING", json_format=None)
            │
            ▼
        structlog processor chain:
          1. merge_contextvars     (slot / seq of the job a thread runs)
          2. add_log_level
          3. add_logger_name
          4. TimeStamper(iso, utc)
          5. StackInfoRenderer / format_exc_info
          6. JSONRenderer  or  ConsoleRenderer

Examples:
    >>> from runpar.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG")
    >>> log = get_logger(__name__)
    >>> log.info("job.finished", seq=3, status="success")

Environment:
    RUNPAR_LOG_LEVEL and RUNPAR_LOG_FORMAT are read through
    :class:`~runpar.core.config.settings.RunparSettings`; explicit
    arguments win.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    level: str = "WARNING",
    json_format: bool | None = None,
    *,
    force: bool = False,
) -> None:
    """Configure structured logging for the process.

    Subsequent calls are no-ops unless ``force`` is set.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto
            (JSON when stderr is not a tty)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    level_num = getattr(logging, level.upper(), logging.WARNING)

    if json_format is None:
        json_format = not sys.stderr.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_num,
        force=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
