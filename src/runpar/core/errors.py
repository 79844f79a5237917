"""
Structured error types for runpar.

Every failure that can end a run early (bad configuration, unreadable
input) or that marks a single job invalid is represented by a typed
subclass of :class:`RunparError`. Each error carries a category, a
structured context for logging, and the underlying cause.

Per-job execution failures (non-zero exit, signals, timeouts, spawn
errors) are NOT exceptions: the supervisor turns them into
``JobResult`` values so they never unwind a worker.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                      RunparError                          │
        │        (category, context, cause, to_dict())              │
        ├──────────────────────────────────────────────────────────┤
        │  ConfigError        FileAccessError     InputReadError    │
        │  (CONFIG, kind)     (IO, op + path)     (INPUT, fatal)    │
        │                                                           │
        │  CommandBuildError                                        │
        │  (BUILD, per job, never spawned)                          │
        └──────────────────────────────────────────────────────────┘

Usage:
    from runpar.core.errors import ConfigError, ConfigErrorKind

    raise ConfigError(ConfigErrorKind.JOBS_NAN, value="four")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for logging and exit handling."""

    CONFIG = "CONFIG"         # Invalid or missing configuration values
    INPUT = "INPUT"           # Input source could not be read
    IO = "IO"                 # File open/read/write failures
    BUILD = "BUILD"           # Command template could not be rendered
    SPAWN = "SPAWN"           # Executable could not be started
    INTERNAL = "INTERNAL"     # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        seq: Job sequence number, when the error belongs to one job
        path: File path involved in the failure
        value: Offending user-supplied value
        metadata: Additional key-value pairs
    """

    seq: int | None = None
    path: str | None = None
    value: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ("seq", "path", "value"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RunparError(Exception):
    """Base exception for all runpar errors.

    Subclasses set ``default_category``; callers may override it.

    Attributes:
        message: Human-readable error message
        category: ErrorCategory for classification
        context: ErrorContext with structured metadata
        cause: Underlying exception, if any
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RunparError:
        """Add context fields to this error (fluent API)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        result.update(self.context.to_dict())
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# FILE ACCESS
# =============================================================================


class FileOp(str, Enum):
    """File operation that failed."""

    OPEN = "open"
    READ = "read"
    WRITE = "write"


class FileAccessError(RunparError):
    """An input or log file could not be opened, read or written.

    Tagged with the path and the underlying ``OSError``; always fatal
    to the run.
    """

    default_category = ErrorCategory.IO

    def __init__(self, op: FileOp, path: str | Path, cause: BaseException):
        self.op = op
        self.path = Path(path)
        super().__init__(
            f"unable to {op.value} {str(self.path)!r}: {cause}",
            context=ErrorContext(path=str(self.path)),
            cause=cause,
        )


class InputReadError(RunparError):
    """The input source failed mid-stream. Fatal for the whole run."""

    default_category = ErrorCategory.INPUT

    def __init__(self, source: str, cause: BaseException):
        self.source = source
        super().__init__(
            f"unable to read input from {source}: {cause}",
            context=ErrorContext(path=source),
            cause=cause,
        )


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigErrorKind(str, Enum):
    """Every distinct way a user-supplied configuration can be rejected."""

    DELAY_NAN = "delay_nan"
    JOBS_NAN = "jobs_nan"
    TIMEOUT_NAN = "timeout_nan"
    MEM_INVALID = "mem_invalid"
    MAX_ARGS_NAN = "max_args_nan"
    NO_VALUE = "no_value"
    NON_TERMINATED = "non_terminated"
    NO_ARGUMENTS = "no_arguments"
    INVALID_ARGUMENT = "invalid_argument"
    REDIR_FILE = "redir_file"
    FILE = "file"


_CONFIG_MESSAGES: dict[ConfigErrorKind, str] = {
    ConfigErrorKind.DELAY_NAN: "delay parameter, '{value}', is not a number.",
    ConfigErrorKind.JOBS_NAN: "jobs parameter, '{value}', is not a number.",
    ConfigErrorKind.TIMEOUT_NAN: "invalid timeout value: {value}",
    ConfigErrorKind.MEM_INVALID: "invalid memory value: {value}",
    ConfigErrorKind.MAX_ARGS_NAN: "groups parameter, '{value}', is not a number.",
    ConfigErrorKind.NO_VALUE: "no {value} parameter was defined.",
    ConfigErrorKind.NON_TERMINATED: (
        "command is not properly terminated:\n  $ {value}\n"
        "Tip: Try using the --quote parameter to escape your command"
    ),
    ConfigErrorKind.NO_ARGUMENTS: "no input arguments were given.",
    ConfigErrorKind.INVALID_ARGUMENT: "invalid argument: {value}",
    ConfigErrorKind.REDIR_FILE: "an error occurred while redirecting file: {value!r}",
    ConfigErrorKind.FILE: "{value}",
}


class ConfigError(RunparError):
    """A configuration value was rejected before any job started.

    Carries just enough context (the offending value) to render a precise
    message. The run never partially applies a bad configuration.

    Example:
        >>> err = ConfigError(ConfigErrorKind.JOBS_NAN, value="four")
        >>> str(err)
        "jobs parameter, 'four', is not a number."
    """

    default_category = ErrorCategory.CONFIG

    def __init__(
        self,
        kind: ConfigErrorKind,
        value: str | None = None,
        *,
        cause: BaseException | None = None,
    ):
        self.kind = kind
        self.value = value
        message = _CONFIG_MESSAGES[kind].format(value=value if value is not None else "")
        super().__init__(message, context=ErrorContext(value=value), cause=cause)

    @classmethod
    def from_file_error(cls, error: FileAccessError) -> ConfigError:
        """Wrap an input-file failure raised while building the configuration."""
        return cls(ConfigErrorKind.FILE, value=error.message, cause=error)


# =============================================================================
# COMMAND BUILDING
# =============================================================================


class CommandBuildError(RunparError):
    """A template referenced a positional argument the job does not have.

    The job is marked invalid and never spawned.
    """

    default_category = ErrorCategory.BUILD

    def __init__(self, index: int, available: int, seq: int | None = None):
        self.index = index
        self.available = available
        super().__init__(
            f"placeholder {{{index}}} is out of range: job has {available} argument(s)",
            context=ErrorContext(seq=seq, metadata={"index": index, "available": available}),
        )


__all__ = [
    "CommandBuildError",
    "ConfigError",
    "ConfigErrorKind",
    "ErrorCategory",
    "ErrorContext",
    "FileAccessError",
    "FileOp",
    "InputReadError",
    "RunparError",
]
