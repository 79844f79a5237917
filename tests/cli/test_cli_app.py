"""Tests for runpar.cli - the command line via CliRunner."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from runpar.cli.app import app
from runpar.cli.args import ListKind, build_source, split_positionals
from runpar.core.errors import ConfigError, ConfigErrorKind
from runpar.execution.joblog import HEADER

runner = CliRunner()


# ─── Positional parsing ──────────────────────────────────────────────────


class TestSplitPositionals:
    def test_command_and_lists(self):
        command, lists = split_positionals(
            ["gzip", "-9", "{}", ":::", "a", "b", "::::+", "names.lst"],
        )
        assert command == ["gzip", "-9", "{}"]
        assert [(spec.kind, spec.linked, spec.values) for spec in lists] == [
            (ListKind.ARGS, False, ["a", "b"]),
            (ListKind.FILES, True, ["names.lst"]),
        ]

    def test_no_lists_means_stdin(self):
        command, lists = split_positionals(["echo"])
        assert command == ["echo"]
        assert lists == []

    def test_empty_list(self):
        with pytest.raises(ConfigError) as exc_info:
            split_positionals(["echo", ":::"])
        assert exc_info.value.kind is ConfigErrorKind.NO_ARGUMENTS

    def test_unknown_option_before_command(self):
        with pytest.raises(ConfigError) as exc_info:
            split_positionals(["--bogus", "echo"])
        assert exc_info.value.kind is ConfigErrorKind.INVALID_ARGUMENT

    def test_missing_file_list(self, tmp_path: Path):
        _, lists = split_positionals(["cat", "::::", str(tmp_path / "missing")])
        with pytest.raises(ConfigError) as exc_info:
            build_source(lists)
        assert exc_info.value.kind is ConfigErrorKind.FILE

    def test_missing_input_file(self, tmp_path: Path):
        with pytest.raises(ConfigError) as exc_info:
            build_source([], input_file=str(tmp_path / "missing"))
        assert exc_info.value.kind is ConfigErrorKind.REDIR_FILE


# ─── Running ─────────────────────────────────────────────────────────────


@pytest.mark.slow
class TestRun:
    """End-to-end invocations of the runpar command."""

    def test_args_list(self):
        result = runner.invoke(app, ["-j", "2", "-k", "echo", "{}", ":::", "a", "b", "c"])
        assert result.exit_code == 0
        assert result.stdout == "a\nb\nc\n"

    def test_stdin_records(self):
        result = runner.invoke(app, ["-k", "echo", "line:{}"], input="x\ny\n")
        assert result.exit_code == 0
        assert result.stdout == "line:x\nline:y\n"

    def test_stdin_non_utf8_bytes(self):
        result = runner.invoke(app, ["-k", "echo"], input=b"a\n\xffb\n")
        assert result.exit_code == 0
        assert result.stdout_bytes == b"a\n\xffb\n"

    def test_command_flags_pass_through(self):
        result = runner.invoke(app, ["-k", "printf", "%s-", ":::", "a", "b"])
        assert result.exit_code == 0
        assert result.stdout == "a-b-"

    def test_cartesian_product(self):
        result = runner.invoke(app, ["-j", "1", "-k", "echo", "{1}{2}", ":::", "a", "b", ":::", "1", "2"])
        assert result.stdout.split() == ["a1", "a2", "b1", "b2"]

    def test_linked_lists(self):
        result = runner.invoke(app, ["-k", "echo", "{1}{2}", ":::", "a", "b", ":::+", "1", "2"])
        assert result.stdout.split() == ["a1", "b2"]

    def test_file_list(self, tmp_path: Path):
        inputs = tmp_path / "inputs.txt"
        inputs.write_text("one\ntwo\n")
        result = runner.invoke(app, ["-k", "echo", "::::", str(inputs)])
        assert result.stdout == "one\ntwo\n"

    def test_failure_exit_code(self):
        result = runner.invoke(app, ["--shell", "exit", "{}", ":::", "0", "2"])
        assert result.exit_code == 1

    def test_joblog_and_resume(self, tmp_path: Path):
        log = tmp_path / "jobs.log"
        first = runner.invoke(app, ["--joblog", str(log), "echo", ":::", "a", "b"])
        assert first.exit_code == 0
        second = runner.invoke(app, ["--joblog", str(log), "--resume", "echo", ":::", "a", "b", "c"])
        assert second.exit_code == 0
        assert second.stdout == "c\n"
        lines = log.read_text().splitlines()
        assert lines[0] == HEADER
        assert len(lines) == 4

    def test_dry_run(self):
        result = runner.invoke(app, ["--dry-run", "rm", "{}", ":::", "a b", "c"])
        assert result.exit_code == 0
        assert result.stdout == "rm 'a b'\nrm c\n"

    def test_timeout_notice(self):
        result = runner.invoke(app, ["--timeout", "0.5", "--grace", "0.2", "sleep", ":::", "5"])
        assert result.exit_code == 1
        assert "timed_out" in result.output


# ─── Errors and info flags ───────────────────────────────────────────────


class TestErrors:
    @pytest.mark.parametrize(
        ("argv", "message"),
        [
            (["-j", "four", "echo"], "jobs parameter, 'four', is not a number."),
            (["--memfree", "1Q", "echo"], "invalid memory value: 1Q"),
            (["--delay", "soon", "echo"], "delay parameter, 'soon', is not a number."),
            (["--timeout", "0", "echo"], "invalid timeout value: 0"),
            (["-n", "0", "echo"], "groups parameter, '0', is not a number."),
            (["--resume", "echo"], "no joblog parameter was defined."),
            (["echo", ":::"], "no input arguments were given."),
            (["echo 'oops", ":::", "a"], "command is not properly terminated"),
        ],
    )
    def test_parsing_errors(self, argv, message):
        result = runner.invoke(app, argv)
        assert result.exit_code == 1
        assert f"runpar: parsing error: {message}" in result.output
        assert "For help on command-line usage, execute `runpar --help`" in result.output

    def test_missing_input_file(self, tmp_path: Path):
        result = runner.invoke(app, ["-a", str(tmp_path / "nope"), "echo"])
        assert result.exit_code == 1
        assert "an error occurred while redirecting file" in result.output


class TestInfoFlags:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.startswith("runpar ")

    def test_num_cpu_cores(self):
        result = runner.invoke(app, ["--num-cpu-cores"])
        assert result.exit_code == 0
        assert int(result.stdout.strip()) == (os.cpu_count() or 1)

    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "--keep-order" in result.stdout
