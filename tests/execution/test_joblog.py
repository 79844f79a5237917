"""Tests for runpar.execution.joblog - format, durability, resume parsing."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from runpar.core.errors import FileAccessError
from runpar.execution.joblog import HEADER, JobLog, escape_command, format_entry
from runpar.execution.models import JobResult, JobStatus

START = datetime(2024, 1, 2, 3, 4, 5, 250000, tzinfo=UTC)
END = datetime(2024, 1, 2, 3, 4, 6, 750000, tzinfo=UTC)


def result(seq: int, status: JobStatus = JobStatus.SUCCESS, **kwargs) -> JobResult:
    kwargs.setdefault("exit_code", 0 if status is JobStatus.SUCCESS else 1)
    return JobResult(seq=seq, command=kwargs.pop("command", f"echo {seq}"), status=status,
                     started_at=START, finished_at=END, duration=1.5, **kwargs)


class TestFormat:
    def test_epoch_entry(self):
        line = format_entry(result(3))
        assert line.split("\t") == [
            "3", f"{START.timestamp():.3f}", f"{END.timestamp():.3f}", "1.500",
            "success", "0", "0", "echo 3",
        ]

    def test_iso8601_entry(self):
        fields = format_entry(result(1), iso8601=True).split("\t")
        assert fields[1] == "2024-01-02T03:04:05.250+00:00"

    def test_timeout_has_no_exit_value(self):
        fields = format_entry(result(2, JobStatus.TIMED_OUT, exit_code=None, signal=15)).split("\t")
        assert fields[4:7] == ["timed_out", "-", "15"]

    def test_command_is_escaped(self):
        assert escape_command("a\tb\nc\\d") == "a\\tb\\nc\\\\d"
        line = format_entry(result(1, command="printf 'x\ty'"))
        assert len(line.split("\t")) == len(HEADER.split("\t"))


class TestJobLog:
    def test_new_run_truncates_and_writes_header(self, tmp_joblog: Path):
        tmp_joblog.write_text("stale\n")
        with JobLog(tmp_joblog) as log:
            log.write(result(1))
            log.write(result(2, JobStatus.FAILURE))
        lines = tmp_joblog.read_text().splitlines()
        assert lines[0] == HEADER
        assert len(lines) == 3

    def test_resume_appends_without_second_header(self, tmp_joblog: Path):
        with JobLog(tmp_joblog) as log:
            log.write(result(1))
        with JobLog(tmp_joblog, append=True) as log:
            log.write(result(2))
        lines = tmp_joblog.read_text().splitlines()
        assert lines.count(HEADER) == 1
        assert len(lines) == 3

    def test_resume_after_cut_short_entry(self, tmp_joblog: Path):
        with JobLog(tmp_joblog) as log:
            log.write(result(1))
        with open(tmp_joblog, "a") as handle:
            handle.write("2\t1704164645.250\t17041")
        with JobLog(tmp_joblog, append=True) as log:
            log.write(result(3))

        lines = tmp_joblog.read_text().splitlines()
        assert lines[-1] == format_entry(result(3))
        assert JobLog.completed(tmp_joblog) == {1, 3}

    def test_append_to_empty_file_writes_header(self, tmp_joblog: Path):
        tmp_joblog.touch()
        with JobLog(tmp_joblog, append=True) as log:
            log.write(result(1))
        assert tmp_joblog.read_text().splitlines()[0] == HEADER

    def test_entry_is_on_disk_before_close(self, tmp_joblog: Path):
        log = JobLog(tmp_joblog).open()
        log.write(result(1))
        assert len(tmp_joblog.read_text().splitlines()) == 2
        log.close()

    def test_write_before_open(self, tmp_joblog: Path):
        with pytest.raises(RuntimeError):
            JobLog(tmp_joblog).write(result(1))

    def test_unwritable_location(self, tmp_path: Path):
        with pytest.raises(FileAccessError):
            JobLog(tmp_path / "no" / "such" / "dir.log").open()


class TestCompleted:
    def test_only_successes_count(self, tmp_joblog: Path):
        with JobLog(tmp_joblog) as log:
            log.write(result(1))
            log.write(result(2, JobStatus.FAILURE))
            log.write(result(3))
            log.write(result(4, JobStatus.TIMED_OUT, exit_code=None))
        assert JobLog.completed(tmp_joblog) == {1, 3}

    def test_missing_log_means_nothing_done(self, tmp_path: Path):
        assert JobLog.completed(tmp_path / "absent.log") == set()

    def test_malformed_lines_are_ignored(self, tmp_joblog: Path):
        tmp_joblog.write_text(
            HEADER + "\n"
            "garbage\n"
            "x\t1\t2\t3\tsuccess\t0\t0\tcmd\n"
            + format_entry(result(5)) + "\n"
        )
        assert JobLog.completed(tmp_joblog) == {5}

    def test_command_with_tabs_round_trips(self, tmp_joblog: Path):
        with JobLog(tmp_joblog) as log:
            log.write(result(9, command="a\tb"))
        assert JobLog.completed(tmp_joblog) == {9}
