"""
Run configuration - the immutable contract between the CLI and the engine.

WHY
───
The engine must never see a half-validated setting. Every user-supplied
string (``--jobs four``, ``--memfree 1Q``) is converted here and either
produces a complete, frozen :class:`RunConfig` or raises a single
:class:`~runpar.core.errors.ConfigError` whose ``kind`` says exactly
what was wrong. Nothing downstream re-validates.

ARCHITECTURE
────────────
::

    CLI strings ──► build_config(...) ──► RunConfig (frozen)
                         │
                         ├── parse_count()    jobs / max-args
                         ├── parse_seconds()  delay / timeout / grace
                         ├── parse_memory()   memfree  (K/M/G/T)
                         └── tokenize()       command template

    RunparSettings supplies ambient defaults (grace, poll, backoff).
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from runpar.core.config.settings import RunparSettings, get_settings
from runpar.core.errors import ConfigError, ConfigErrorKind


class OrderingMode(str, Enum):
    """How finished jobs are flushed to the shared output streams."""

    AS_COMPLETED = "as_completed"
    INPUT_ORDER = "input_order"


class RunConfig(BaseModel):
    """Fully validated, read-only configuration consumed by the engine."""

    model_config = ConfigDict(frozen=True)

    # ── Admission ────────────────────────────────────────────────
    jobs: int = Field(default=1, ge=1)
    memfree: int | None = Field(default=None, ge=0, description="Free-memory floor in bytes")
    delay: float = Field(default=0.0, ge=0)

    # ── Supervision ──────────────────────────────────────────────
    timeout: float | None = Field(default=None, gt=0)
    grace_period: float = Field(default=5.0, ge=0)
    poll_interval: float = Field(default=0.05, gt=0)
    workdir: Path | None = None

    # ── Output ───────────────────────────────────────────────────
    ordering: OrderingMode = OrderingMode.AS_COMPLETED
    ungroup: bool = False
    verbose: bool = False
    quiet: bool = False
    eta: bool = False

    # ── Command ──────────────────────────────────────────────────
    command: tuple[str, ...] = ()
    max_args: int = Field(default=1, ge=1)
    pipe: bool = False
    shell: bool | None = None
    quote: bool = False
    dry_run: bool = False

    # ── Job log ──────────────────────────────────────────────────
    joblog: Path | None = None
    joblog_8601: bool = False
    resume: bool = False

    # ── Backoff ──────────────────────────────────────────────────
    backoff_base: float = Field(default=0.05, gt=0)
    backoff_max: float = Field(default=1.0, gt=0)

    @property
    def commands_mode(self) -> bool:
        """No template: each input record is itself a command line."""
        return not self.command and not self.pipe


# =============================================================================
# VALUE PARSERS
# =============================================================================

_MEMORY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMGT]?)B?\s*$", re.IGNORECASE)
_MEMORY_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}


def parse_memory(raw: str) -> int:
    """Parse ``512M`` / ``1G`` / ``2048`` into bytes.

    Raises:
        ConfigError: MEM_INVALID if the value cannot be understood
    """
    match = _MEMORY_RE.match(raw)
    if match is None:
        raise ConfigError(ConfigErrorKind.MEM_INVALID, value=raw)
    number, unit = match.groups()
    return int(float(number) * _MEMORY_UNITS[unit.upper()])


def parse_count(raw: str, kind: ConfigErrorKind) -> int:
    """Parse a positive integer (``--jobs``, ``--max-args``)."""
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(kind, value=raw) from None
    if value < 1:
        raise ConfigError(kind, value=raw)
    return value


def parse_seconds(raw: str, kind: ConfigErrorKind, *, allow_zero: bool = True) -> float:
    """Parse a non-negative number of seconds (``--delay``, ``--timeout``)."""
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(kind, value=raw) from None
    if value < 0 or (value == 0 and not allow_zero) or value != value:
        raise ConfigError(kind, value=raw)
    return value


# =============================================================================
# BUILDER
# =============================================================================


def build_config(
    *,
    command: str | list[str] | tuple[str, ...] = (),
    jobs: str | None = None,
    memfree: str | None = None,
    delay: str | None = None,
    timeout: str | None = None,
    grace: str | None = None,
    max_args: str | None = None,
    keep_order: bool = False,
    ungroup: bool = False,
    pipe: bool = False,
    shell: bool | None = None,
    quote: bool = False,
    joblog: str | None = None,
    joblog_8601: bool = False,
    resume: bool = False,
    dry_run: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    eta: bool = False,
    workdir: str | None = None,
    settings: RunparSettings | None = None,
) -> RunConfig:
    """Validate raw user values and produce a frozen :class:`RunConfig`.

    ``command`` may be a single string or a sequence of words; words are
    joined with spaces to form the template, which must tokenize cleanly
    (honouring ``quote``).

    Raises:
        ConfigError: On the first invalid value; nothing is applied.
    """
    from runpar.execution.command import tokenize

    settings = settings or get_settings()

    if isinstance(command, str):
        tokens = (command,) if command.strip() else ()
    else:
        tokens = tuple(command)
    if tokens:
        # Rejects unterminated quotes now rather than when the first job builds.
        tokenize(" ".join(tokens), quote=quote)

    if pipe and not tokens:
        raise ConfigError(ConfigErrorKind.NO_VALUE, value="command")
    if resume and joblog is None:
        raise ConfigError(ConfigErrorKind.NO_VALUE, value="joblog")
    if joblog is not None and not joblog.strip():
        raise ConfigError(ConfigErrorKind.NO_VALUE, value="joblog")
    if workdir is not None and not workdir.strip():
        raise ConfigError(ConfigErrorKind.NO_VALUE, value="workdir")

    return RunConfig(
        jobs=parse_count(jobs, ConfigErrorKind.JOBS_NAN) if jobs is not None else settings.jobs,
        memfree=parse_memory(memfree) if memfree is not None else None,
        delay=parse_seconds(delay, ConfigErrorKind.DELAY_NAN) if delay is not None else 0.0,
        timeout=(
            parse_seconds(timeout, ConfigErrorKind.TIMEOUT_NAN, allow_zero=False)
            if timeout is not None
            else None
        ),
        grace_period=(
            parse_seconds(grace, ConfigErrorKind.TIMEOUT_NAN) if grace is not None else settings.grace_period
        ),
        poll_interval=settings.poll_interval,
        max_args=parse_count(max_args, ConfigErrorKind.MAX_ARGS_NAN) if max_args is not None else 1,
        ordering=OrderingMode.INPUT_ORDER if keep_order else OrderingMode.AS_COMPLETED,
        ungroup=ungroup,
        command=tokens,
        pipe=pipe,
        shell=shell,
        quote=quote,
        joblog=Path(joblog) if joblog else None,
        joblog_8601=joblog_8601,
        resume=resume,
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        eta=eta,
        workdir=Path(workdir) if workdir else None,
        backoff_base=settings.backoff_base,
        backoff_max=settings.backoff_max,
    )
