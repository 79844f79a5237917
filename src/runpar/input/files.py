"""Raw-input file accessor.

Thin wrappers that open and read input files, converting every
``OSError`` into a :class:`~runpar.core.errors.FileAccessError` tagged
with the operation and the path. The engine treats any such failure as
fatal to the run.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import TextIO

from runpar.core.errors import FileAccessError, FileOp


def open_input(path: str | Path) -> TextIO:
    """Open an input file for reading text lines."""
    try:
        return open(path, encoding="utf-8", errors="surrogateescape", newline=None)
    except OSError as exc:
        raise FileAccessError(FileOp.OPEN, path, exc) from exc


def iter_lines(path: str | Path) -> Iterator[str]:
    """Yield the lines of ``path`` without their trailing newline."""
    handle = open_input(path)
    with handle:
        while True:
            try:
                line = handle.readline()
            except OSError as exc:
                raise FileAccessError(FileOp.READ, path, exc) from exc
            if not line:
                return
            yield line.rstrip("\n")


def count_lines(path: str | Path) -> int:
    """Count the records ``iter_lines`` would yield for ``path``."""
    return sum(1 for _ in iter_lines(path))

def decode_stream(stream: TextIO) -> TextIO:
    """Make ``stream`` decode like :func:`open_input` does.

    Streams that cannot be reconfigured (``io.StringIO``) are returned
    as they are.
    """
    reconfigure = getattr(stream, "reconfigure", None)
    if reconfigure is not None and hasattr(stream, "buffer"):
        reconfigure(encoding="utf-8", errors="surrogateescape")
    return stream
