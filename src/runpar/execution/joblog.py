"""Job Log - durable, append-only record of every finished job.

Format (tab separated, one header line)::

    Seq  Starttime  Endtime  JobRuntime  Status  Exitval  Signal  Command

Each entry is flushed and fsynced before the result is handed to the
collector, so whatever the log says happened really did happen, even if
the process is killed a moment later. A resume run reads the log back
with :meth:`JobLog.completed` and skips every sequence number recorded
as ``success``.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime
from pathlib import Path
from typing import TextIO

from runpar.core.errors import FileAccessError, FileOp
from runpar.core.logging import get_logger
from runpar.execution.models import JobResult, JobStatus

logger = get_logger(__name__)

HEADER = "Seq\tStarttime\tEndtime\tJobRuntime\tStatus\tExitval\tSignal\tCommand"
_FIELDS = len(HEADER.split("\t"))

_ESCAPES = str.maketrans({"\\": "\\\\", "\t": "\\t", "\n": "\\n"})


def escape_command(command: str) -> str:
    """Make a command safe for a single tab-separated field."""
    return command.translate(_ESCAPES)


def format_timestamp(moment: datetime, *, iso8601: bool = False) -> str:
    if iso8601:
        return moment.isoformat(timespec="milliseconds")
    return f"{moment.timestamp():.3f}"


def format_entry(result: JobResult, *, iso8601: bool = False) -> str:
    return "\t".join([
        str(result.seq),
        format_timestamp(result.started_at, iso8601=iso8601),
        format_timestamp(result.finished_at, iso8601=iso8601),
        f"{result.duration:.3f}",
        result.status.value,
        "-" if result.exit_code is None else str(result.exit_code),
        str(result.signal or 0),
        escape_command(result.command),
    ])


def _ends_with_newline(path: Path) -> bool:
    with open(path, "rb") as handle:
        handle.seek(-1, os.SEEK_END)
        return handle.read(1) == b"\n"


class JobLog:
    """Single-writer job log shared by every worker slot."""

    def __init__(self, path: Path, *, iso8601: bool = False, append: bool = False):
        self.path = Path(path)
        self.iso8601 = iso8601
        self.append = append
        self._lock = threading.Lock()
        self._file: TextIO | None = None

    def open(self) -> JobLog:
        """Open for writing: truncate for a new run, append when resuming.

        Raises:
            FileAccessError: The log cannot be opened or the header written
        """
        mode = "a" if self.append else "w"
        try:
            self._file = open(self.path, mode, encoding="utf-8", errors="surrogateescape")
            if self._file.tell() == 0:
                self._file.write(HEADER + "\n")
                self._sync()
            elif not _ends_with_newline(self.path):
                # Entry cut short by a killed run.
                self._file.write("\n")
                self._sync()
        except OSError as exc:
            raise FileAccessError(FileOp.WRITE, self.path, exc) from exc
        logger.debug("joblog.opened", path=str(self.path), append=self.append)
        return self

    def _sync(self) -> None:
        assert self._file is not None
        self._file.flush()
        os.fsync(self._file.fileno())

    def write(self, result: JobResult) -> None:
        """Append one entry and make it durable before returning.

        Raises:
            FileAccessError: The entry could not be written
        """
        line = format_entry(result, iso8601=self.iso8601)
        with self._lock:
            if self._file is None:
                raise RuntimeError("job log is not open")
            try:
                self._file.write(line + "\n")
                self._sync()
            except OSError as exc:
                raise FileAccessError(FileOp.WRITE, self.path, exc) from exc

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> JobLog:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def completed(path: Path) -> set[int]:
        """Sequence numbers recorded as ``success`` in an existing log.

        A missing log means nothing has completed yet. Lines that do not
        parse are skipped with a warning.
        """
        done: set[int] = set()
        try:
            handle = open(path, encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError:
            return done
        except OSError as exc:
            raise FileAccessError(FileOp.OPEN, path, exc) from exc

        with handle:
            for lineno, line in enumerate(handle, start=1):
                line = line.rstrip("\n")
                if not line or line == HEADER:
                    continue
                fields = line.split("\t", _FIELDS - 1)
                if len(fields) != _FIELDS or not fields[0].isdigit():
                    logger.warning("joblog.malformed_line", path=str(path), line=lineno)
                    continue
                if fields[4] == JobStatus.SUCCESS.value:
                    done.add(int(fields[0]))
        return done


__all__ = ["HEADER", "JobLog", "escape_command", "format_entry", "format_timestamp"]
