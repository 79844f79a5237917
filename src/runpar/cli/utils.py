"""
CLI utility helpers - error rendering on stderr.
"""

from __future__ import annotations

import typer
from rich.console import Console

from runpar.core.errors import ConfigError, RunparError

err_console = Console(stderr=True, highlight=False)

USAGE_HINT = "For help on command-line usage, execute `runpar --help`"


def _emit(text: str) -> None:
    err_console.print(text, markup=False, soft_wrap=True)


def fail_config(error: ConfigError) -> None:
    """Render a configuration error with the usage hint and exit 1."""
    _emit(f"runpar: parsing error: {error.message}")
    _emit(USAGE_HINT)
    raise typer.Exit(code=1)


def fail(error: RunparError) -> None:
    """Render any other fatal error and exit 1."""
    _emit(f"runpar: {error.message}")
    raise typer.Exit(code=1)
