"""Command-line front end for runpar."""

from runpar.cli.app import app, main

__all__ = ["app", "main"]
