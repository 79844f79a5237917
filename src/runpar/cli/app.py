"""
Root Typer application for the ``runpar`` command.

Options are only recognised before the command; the first positional
word starts the command template, so the command's own flags
(``runpar grep -c foo ::: *.log``) pass through untouched.
"""

from __future__ import annotations

import os
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer

from runpar import __version__
from runpar.cli.args import build_source, split_positionals
from runpar.cli.utils import fail, fail_config
from runpar.core.config import build_config, get_settings
from runpar.core.errors import ConfigError, RunparError
from runpar.core.logging import configure_logging, get_logger
from runpar.execution.pool import WorkerPool
from runpar.execution.signals import ShutdownFlag, install_signal_handlers
from runpar.input.lock import InputLock

logger = get_logger(__name__)

app = typer.Typer(
    name="runpar",
    help="runpar - run commands in parallel over a stream of inputs.",
    add_completion=False,
    rich_markup_mode="rich",
)


# ── Eager callbacks ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("runpar")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"runpar {v}")
        raise typer.Exit()


def _cores_callback(value: bool) -> None:
    if value:
        typer.echo(os.cpu_count() or 1)
        raise typer.Exit()


# ── Command ──────────────────────────────────────────────────────────────


@app.command(
    context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True},
)
def run(
    arguments: list[str] | None = typer.Argument(
        None,
        metavar="[COMMAND ...] [::: ARGS ...] [:::: FILES ...]",
        help="Command template followed by input lists (:::, :::+, ::::, ::::+).",
        show_default=False,
    ),
    jobs: str | None = typer.Option(None, "--jobs", "-j", help="Number of jobs to run at once (default: one per CPU core)."),
    memfree: str | None = typer.Option(None, "--memfree", help="Start new jobs only while this much memory is free (e.g. 512M, 2G)."),
    timeout: str | None = typer.Option(None, "--timeout", help="Kill a job after this many seconds."),
    grace: str | None = typer.Option(None, "--grace", help="Seconds between SIGTERM and SIGKILL."),
    delay: str | None = typer.Option(None, "--delay", help="Minimum seconds between job starts."),
    keep_order: bool = typer.Option(False, "--keep-order", "-k", help="Print output in input order."),
    ungroup: bool = typer.Option(False, "--ungroup", "-u", help="Let jobs write straight to the terminal."),
    max_args: str | None = typer.Option(None, "--max-args", "-n", help="Group this many records into one job."),
    pipe: bool = typer.Option(False, "--pipe", help="Feed records to one shared command's stdin."),
    shell: bool | None = typer.Option(None, "--shell/--no-shell", help="Force or forbid running through $SHELL (or /bin/sh).", show_default=False),
    quote: bool = typer.Option(False, "--quote", "-q", help="Split the command on whitespace only; keep quotes literally."),
    input_file: str | None = typer.Option(None, "--input-file", "-a", help="Read records from this file instead of stdin."),
    joblog: str | None = typer.Option(None, "--joblog", help="Record every finished job in this file."),
    joblog_8601: bool = typer.Option(False, "--joblog-8601", help="Use ISO-8601 timestamps in the job log."),
    resume: bool = typer.Option(False, "--resume", help="Skip jobs the job log records as successful."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the commands instead of running them."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print each command to stderr before it runs."),
    quiet: bool = typer.Option(False, "--quiet", help="Do not report timeouts and failed spawns on stderr."),
    eta: bool = typer.Option(False, "--eta", help="Print an ETA line to stderr after each job."),
    workdir: str | None = typer.Option(None, "--workdir", help="Run every job in this directory."),
    log_level: str | None = typer.Option(None, "--log-level", help="Diagnostic log level (default: WARNING)."),
    log_format: str | None = typer.Option(None, "--log-format", help="Diagnostic log format: console | json."),
    num_cpu_cores: bool | None = typer.Option(
        None, "--num-cpu-cores", help="Print the number of CPU cores and exit.",
        callback=_cores_callback, is_eager=True,
    ),
    version: bool | None = typer.Option(
        None, "--version", "-V", help="Show version and exit.",
        callback=_version_callback, is_eager=True,
    ),
) -> None:
    """Run COMMAND once per input record, several at a time."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=(log_format or settings.log_format).lower() == "json",
        force=True,
    )

    flag = ShutdownFlag()
    try:
        command, lists = split_positionals(arguments or [])
        config = build_config(
            command=command,
            jobs=jobs,
            memfree=memfree,
            delay=delay,
            timeout=timeout,
            grace=grace,
            max_args=max_args,
            keep_order=keep_order,
            ungroup=ungroup,
            pipe=pipe,
            shell=shell,
            quote=quote,
            joblog=joblog,
            joblog_8601=joblog_8601,
            resume=resume,
            dry_run=dry_run,
            verbose=verbose,
            quiet=quiet,
            eta=eta,
            workdir=workdir,
            settings=settings,
        )
        source = build_source(lists, input_file=input_file)
        pool = WorkerPool.from_config(config, InputLock(source, max_args=config.max_args), flag=flag)
    except ConfigError as exc:
        logger.debug("cli.config_rejected", **exc.to_dict())
        fail_config(exc)
        return
    except RunparError as exc:
        fail(exc)
        return

    with install_signal_handlers(flag):
        try:
            summary = pool.run()
        except RunparError as exc:
            fail(exc)
            return

    if summary.interrupted:
        logger.warning("run.interrupted", reason=flag.reason, **summary.to_dict())
    raise typer.Exit(code=summary.exit_code)


def main() -> None:
    """Console-script entry point."""
    app()
