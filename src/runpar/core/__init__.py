"""Core primitives shared by the engine and the CLI: errors, logging, configuration."""

from runpar.core.errors import (
    CommandBuildError,
    ConfigError,
    ConfigErrorKind,
    ErrorCategory,
    FileAccessError,
    InputReadError,
    RunparError,
)

__all__ = [
    "CommandBuildError",
    "ConfigError",
    "ConfigErrorKind",
    "ErrorCategory",
    "FileAccessError",
    "InputReadError",
    "RunparError",
]
