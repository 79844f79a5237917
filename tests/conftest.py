"""
Shared pytest fixtures for runpar tests.

This module provides:
- Settings cache and logging isolation between tests
- A quiet logging configuration (diagnostics on stderr at WARNING)
- Builders for small runs: config, input lock, in-memory output streams

Usage:
    def test_something(run_pool):
        summary, out, err = run_pool(["a", "b"], command="echo {}")
"""

from __future__ import annotations

import io
import os
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from runpar.core.config import build_config, clear_settings_cache
from runpar.core.logging import configure_logging
from runpar.execution.models import RunSummary
from runpar.execution.pool import WorkerPool
from runpar.execution.signals import ShutdownFlag
from runpar.input.lock import InputLock
from runpar.input.source import InputSource


def pytest_configure(config: pytest.Config) -> None:
    """Keep engine diagnostics off stdout while tests run."""
    configure_logging(level="WARNING", json_format=False, force=True)


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Each test sees fresh settings and no RUNPAR_* or $SHELL leakage from the host."""
    for key in list(os.environ):
        if key.startswith("RUNPAR_"):
            monkeypatch.delenv(key)
    monkeypatch.delenv("SHELL", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def run_pool() -> Callable[..., tuple[RunSummary, bytes, bytes]]:
    """Run a pool over literal arguments and capture its output streams.

    Keyword arguments are passed to ``build_config``; ``memory_probe`` and
    ``flag`` go to the pool.
    """

    def _run(
        values: list[str],
        *,
        memory_probe: Callable[[], int] | None = None,
        flag: ShutdownFlag | None = None,
        **options,
    ) -> tuple[RunSummary, bytes, bytes]:
        options.setdefault("jobs", "2")
        config = build_config(**options)
        lock = InputLock(InputSource.from_args(values), max_args=config.max_args)
        out, err = io.BytesIO(), io.BytesIO()
        pool = WorkerPool.from_config(
            config, lock, flag=flag, stdout=out, stderr=err, memory_probe=memory_probe,
        )
        summary = pool.run()
        return summary, out.getvalue(), err.getvalue()

    return _run


@pytest.fixture
def tmp_joblog(tmp_path: Path) -> Path:
    return tmp_path / "jobs.log"
