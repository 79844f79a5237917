"""Signal handling - graceful drain on SIGINT / SIGTERM.

The shutdown request is an explicit :class:`ShutdownFlag` passed by
reference to every component that blocks: the admission controller, the
worker slots, the job supervisors and the result collector. It is set
once, read many times and never reset within a run.

Usage::

    flag = ShutdownFlag()
    with install_signal_handlers(flag):
        summary = WorkerPool(config, lock, flag=flag).run()
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType
from typing import Any

from runpar.core.logging import get_logger

logger = get_logger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownFlag:
    """Set-once cancellation flag shared by every blocking point."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None
        self._lock = threading.RLock()

    def set(self, reason: str = "requested") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds; True if shutdown was requested."""
        return self._event.wait(timeout)

    @property
    def reason(self) -> str | None:
        return self._reason


@contextmanager
def install_signal_handlers(flag: ShutdownFlag) -> Iterator[ShutdownFlag]:
    """Route SIGINT/SIGTERM to ``flag`` for the duration of the block.

    Only possible from the main thread; elsewhere the block runs without
    handlers. Previous handlers are restored on exit.
    """

    def _handle(signum: int, frame: FrameType | None) -> None:
        flag.set(reason=signal.Signals(signum).name)

    previous: dict[int, Any] = {}
    try:
        for signum in HANDLED_SIGNALS:
            previous[signum] = signal.signal(signum, _handle)
    except ValueError:
        logger.debug("signals.not_main_thread")

    try:
        yield flag
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


__all__ = ["HANDLED_SIGNALS", "ShutdownFlag", "install_signal_handlers"]
