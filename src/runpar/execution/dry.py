"""Dry-run executor: report what would run, run nothing."""

from __future__ import annotations

from runpar.execution.models import JobResult, JobSpec, JobStatus, utcnow


class DryRunExecutor:
    """Turns every job into its command line on stdout.

    In pipe mode the "command line" is the payload that would have been
    written to the shared child.
    """

    def execute(self, spec: JobSpec) -> JobResult:
        now = utcnow()
        if spec.payload is not None:
            output = spec.payload
        else:
            output = (spec.display + "\n").encode("utf-8", errors="surrogateescape")
        return JobResult(
            seq=spec.seq,
            command=spec.display,
            status=JobStatus.SUCCESS,
            exit_code=0,
            stdout=output,
            started_at=now,
            finished_at=now,
        )

    def close(self) -> JobResult | None:
        return None


__all__ = ["DryRunExecutor"]
