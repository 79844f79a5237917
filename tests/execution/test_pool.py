"""Tests for runpar.execution.pool - whole runs end to end.

Exercises admit → claim → build → run → finalize with real /bin/sh
children and in-memory output streams.
"""

from __future__ import annotations

import io
import json
import threading
import time
from pathlib import Path

import pytest

from runpar.core.config import build_config
from runpar.core.logging import configure_logging
from runpar.execution.joblog import HEADER, JobLog
from runpar.execution.models import JobStatus, SlotState
from runpar.execution.pool import Slot, WorkerPool
from runpar.execution.signals import ShutdownFlag
from runpar.input.lock import InputLock
from runpar.input.source import InputList, InputSource

pytestmark = pytest.mark.slow


def joblog_rows(path: Path) -> list[list[str]]:
    lines = path.read_text().splitlines()
    assert lines[0] == HEADER
    return [line.split("\t") for line in lines[1:]]


# ── Slot ────────────────────────────────────────────────────────────────


class TestSlot:
    def test_transitions_are_validated(self):
        slot = Slot(1)
        slot.transition(SlotState.ADMITTING)
        with pytest.raises(ValueError):
            slot.transition(SlotState.RUNNING)
        assert slot.state is SlotState.ADMITTING


# ── Completeness ────────────────────────────────────────────────────────


class TestEveryRecordRunsOnce:
    """N records and K workers give exactly N results, no duplicates."""

    @pytest.mark.parametrize("jobs", ["1", "4", "64"])
    def test_n_results(self, run_pool, tmp_joblog, jobs):
        values = [str(i) for i in range(100)]
        summary, out, _ = run_pool(values, command="echo {}", jobs=jobs, joblog=str(tmp_joblog))

        assert summary.total == 100
        assert summary.exit_code == 0
        assert sorted(out.decode().split()) == sorted(values)
        seqs = [int(row[0]) for row in joblog_rows(tmp_joblog)]
        assert sorted(seqs) == list(range(1, 101))

    def test_grouping(self, run_pool):
        summary, out, _ = run_pool(list("abcde"), command="echo {}", max_args="2", keep_order=True)
        assert summary.total == 3
        assert out == b"a b\nc d\ne\n"


# ── Ordering ────────────────────────────────────────────────────────────


class TestOrdering:
    def test_input_order(self, run_pool):
        summary, out, _ = run_pool(
            ["0.3", "0.1", "0.2"], command="sleep {} && echo {}", jobs="3", keep_order=True,
        )
        assert summary.exit_code == 0
        assert out == b"0.3\n0.1\n0.2\n"

    def test_as_completed(self, run_pool):
        _, out, _ = run_pool(["0.6", "0.05", "0.3"], command="sleep {} && echo {}", jobs="3")
        assert out == b"0.05\n0.3\n0.6\n"

    def test_seq_and_slot_placeholders(self, run_pool):
        _, out, _ = run_pool(["a", "b", "c"], command="echo {#}:{}", jobs="1", keep_order=True)
        assert out == b"1:a\n2:b\n3:c\n"


# ── Failures ────────────────────────────────────────────────────────────


class TestFailures:
    def test_failed_job_sets_exit_code(self, run_pool):
        summary, _, _ = run_pool(["0", "1", "0"], command="exit {}", shell=True)
        assert summary.counts[JobStatus.FAILURE] == 1
        assert summary.exit_code == 1

    def test_timeout(self, run_pool, tmp_joblog):
        started = time.monotonic()
        summary, _, err = run_pool(["10"], command="sleep {}", timeout="1", grace="0.5",
                                   joblog=str(tmp_joblog))
        elapsed = time.monotonic() - started
        assert summary.counts[JobStatus.TIMED_OUT] == 1
        assert 0.9 <= elapsed < 4.0
        assert b"timed_out" in err
        row = joblog_rows(tmp_joblog)[0]
        assert row[4] == "timed_out"
        assert row[5] == "-"

    def test_quiet_suppresses_notices(self, run_pool):
        _, _, err = run_pool(["x"], command="/no/such/binary", quiet=True)
        assert err == b""

    def test_spawn_error(self, run_pool):
        summary, _, err = run_pool(["x"], command="/no/such/binary")
        assert summary.counts[JobStatus.SPAWN_ERROR] == 1
        assert b"spawn_error" in err

    def test_out_of_range_placeholder_is_invalid(self, run_pool, tmp_joblog):
        summary, out, _ = run_pool(["a", "b", "c"], command="echo {1} {2}", max_args="2",
                                   keep_order=True, joblog=str(tmp_joblog))
        assert out == b"a b\n"
        assert summary.counts[JobStatus.SUCCESS] == 1
        assert summary.counts[JobStatus.INVALID] == 1
        assert summary.exit_code == 1
        statuses = {row[0]: row[4] for row in joblog_rows(tmp_joblog)}
        assert statuses == {"1": "success", "2": "invalid"}

    def test_input_read_error_is_fatal(self):
        def broken():
            yield "ok"
            raise OSError("input vanished")

        config = build_config(command="echo {}", jobs="1")
        lock = InputLock(InputSource([InputList(name="dev", opener=broken, total=None)]))
        out, err = io.BytesIO(), io.BytesIO()
        summary = WorkerPool.from_config(config, lock, stdout=out, stderr=err).run()
        assert summary.fatal_error is not None
        assert summary.exit_code == 1
        assert out.getvalue() == b"ok\n"
        assert b"input vanished" in err.getvalue()


# ── Resume ──────────────────────────────────────────────────────────────


class TestResume:
    def test_only_unfinished_jobs_rerun(self, run_pool, tmp_joblog, tmp_path):
        marker = tmp_path / "ran"
        marker.mkdir()
        command = f"touch {marker}/{{}} && test {{}} != c"

        first, _, _ = run_pool(list("abcd"), command=command, joblog=str(tmp_joblog))
        assert first.counts[JobStatus.FAILURE] == 1
        assert JobLog.completed(tmp_joblog) == {1, 2, 4}

        for child in marker.iterdir():
            child.unlink()
        second, _, _ = run_pool(list("abcd"), command=f"touch {marker}/{{}}",
                                joblog=str(tmp_joblog), resume=True)

        assert sorted(p.name for p in marker.iterdir()) == ["c"]
        assert second.skipped == 3
        assert second.total == 1
        assert second.exit_code == 0

        rows = joblog_rows(tmp_joblog)
        successes = [row[0] for row in rows if row[4] == "success"]
        assert sorted(successes) == ["1", "2", "3", "4"]

    def test_resume_with_input_order(self, run_pool, tmp_joblog):
        tmp_joblog.write_text(HEADER + "\n" + "1\t0\t0\t0\tsuccess\t0\t0\techo a\n"
                              "2\t0\t0\t0\tsuccess\t0\t0\techo b\n")
        summary, out, _ = run_pool(list("abcde"), command="echo {}", jobs="4", keep_order=True,
                                   joblog=str(tmp_joblog), resume=True)
        assert out == b"c\nd\ne\n"
        assert summary.skipped == 2


# ── Admission ───────────────────────────────────────────────────────────


class TestMemoryFloor:
    def test_low_memory_holds_jobs_until_it_clears(self, run_pool):
        free = {"bytes": 0}
        threading.Timer(0.3, lambda: free.update(bytes=10 * 1024**3)).start()

        started = time.monotonic()
        summary, out, _ = run_pool(["a", "b"], command="echo {}", memfree="1G",
                                   memory_probe=lambda: free["bytes"])
        assert time.monotonic() - started >= 0.25
        assert summary.exit_code == 0
        assert sorted(out.split()) == [b"a", b"b"]

    def test_running_jobs_are_not_killed_for_memory(self, run_pool):
        samples = iter([10 * 1024**3])

        def probe():
            return next(samples, 0)

        flag = ShutdownFlag()
        threading.Timer(1.0, flag.set).start()
        summary, out, _ = run_pool(["0.3", "x"], command="sleep {} 2>/dev/null; echo done",
                                   jobs="1", memfree="1G", memory_probe=probe, flag=flag)
        assert out == b"done\n"
        assert summary.counts[JobStatus.SUCCESS] == 1
        assert summary.interrupted


# ── Shutdown ────────────────────────────────────────────────────────────


class TestShutdown:
    def test_flag_stops_claims_and_aborts_running(self, run_pool, tmp_joblog):
        flag = ShutdownFlag()
        threading.Timer(0.3, flag.set).start()

        started = time.monotonic()
        summary, _, _ = run_pool([str(i) for i in range(20)], command="sleep 10; echo {}",
                                 jobs="2", grace="0.5", flag=flag, joblog=str(tmp_joblog))
        assert time.monotonic() - started < 4.0
        assert summary.interrupted
        assert summary.exit_code == 1
        assert summary.counts[JobStatus.ABORTED] == 2
        assert summary.total == 2
        assert [row[4] for row in joblog_rows(tmp_joblog)] == ["aborted", "aborted"]


# ── Modes ───────────────────────────────────────────────────────────────


class TestModes:
    def test_dry_run_prints_in_input_order_without_running(self, run_pool, tmp_joblog, tmp_path):
        target = tmp_path / "never"
        summary, out, _ = run_pool(["a", "b"], command=f"touch {target}-{{}}", jobs="2",
                                   dry_run=True, joblog=str(tmp_joblog))
        assert out.decode().splitlines() == [f"touch {target}-a", f"touch {target}-b"]
        assert not any(tmp_path.glob("never-*"))
        assert not tmp_joblog.exists()
        assert summary.exit_code == 0

    def test_commands_mode(self, run_pool):
        _, out, _ = run_pool(["echo one", "echo two | tr a-z A-Z"], keep_order=True)
        assert out == b"one\nTWO\n"

    def test_pipe_mode(self, run_pool, tmp_path):
        out_file = tmp_path / "piped.txt"
        summary, _, _ = run_pool(["a", "b", "c"], command=f"cat > {out_file}", pipe=True,
                                 max_args="2")
        assert summary.exit_code == 0
        assert sorted(out_file.read_text().splitlines()) == ["a", "b", "c"]

    def test_verbose_prints_commands(self, run_pool):
        _, _, err = run_pool(["a"], command="echo {}", verbose=True)
        assert b"echo a\n" in err

    def test_eta_line(self, run_pool):
        _, _, err = run_pool(["a", "b"], command="echo {}", eta=True)
        assert err.count(b"ETA:") == 2

    def test_workdir(self, run_pool, tmp_path):
        _, out, _ = run_pool(["x"], command="pwd", workdir=str(tmp_path))
        assert Path(out.decode().strip()).resolve() == tmp_path.resolve()


# ── Diagnostics ─────────────────────────────────────────────────────────


class TestLogContext:
    def test_job_events_carry_slot_and_seq(self, run_pool, capsys):
        configure_logging(level="DEBUG", json_format=True, force=True)
        try:
            run_pool(["a", "b"], command="echo {}", jobs="1")
        finally:
            configure_logging(level="WARNING", json_format=False, force=True)

        events = [json.loads(line) for line in capsys.readouterr().err.splitlines()
                  if line.startswith("{")]
        finished_jobs = [e for e in events if e["event"] == "job.finished"]
        assert [(e["slot"], e["seq"]) for e in finished_jobs] == [(1, 1), (1, 2)]
        pool_done = next(e for e in events if e["event"] == "pool.finished")
        assert "slot" not in pool_done
