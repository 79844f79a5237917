"""Command Builder - turns claimed input records into concrete jobs.

WHY
───
A template like ``convert {} {.}.png`` is compiled once into a closed set
of substitution tokens. Rendering a job is then a walk over typed
segments, never free-form string interpolation, so an out-of-range
``{3}`` is detected as a build error for that job instead of producing a
surprising command line.

ARCHITECTURE
────────────
::

    tokenize(command, quote)          split a raw command string
    Template.compile(text)            → [Literal | Arg | SeqNo | SlotNo]
    Template.render(args, seq, slot)  → str

    CommandStrategy (Protocol)  .build(claim, slot) -> JobSpec
      ├── TemplateStrategy   substitute into argv (direct exec or sh -c)
      ├── CommandsStrategy   each record is itself a shell command
      └── PipeStrategy       records become bytes for the shared pipe

    select_strategy(config)   picks one variant, once per run

PLACEHOLDERS
────────────
::

    {}     all arguments          {.}   without extension
    {/}    basename               {//}  dirname
    {/.}   basename, no ext       {N}   Nth argument (also {N.} {N/} {N//} {N/.})
    {#}    job sequence number    {%}   worker slot number

A template without any argument placeholder gets the arguments appended
as trailing words.
"""

from __future__ import annotations

import os
import re
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from runpar.core.config.run import RunConfig
from runpar.core.errors import CommandBuildError, ConfigError, ConfigErrorKind
from runpar.execution.models import JobSpec
from runpar.input.lock import Claim

DEFAULT_SHELL = "/bin/sh"

_PLACEHOLDER_RE = re.compile(r"\{(?:(#)|(%)|([1-9]\d*)?(\.|/\.|//|/)?)\}")
_SHELL_CHARS_RE = re.compile(r"[|&;<>()$`\\*?\[~!\n]")


# =============================================================================
# TOKENIZER
# =============================================================================


def tokenize(command: str, *, quote: bool = False) -> list[str]:
    """Split a raw command string into an executable and its arguments.

    In quote mode the string is split on whitespace only and quote
    characters are kept literally.

    Raises:
        ConfigError: NON_TERMINATED if a quote is never closed
    """
    if quote:
        return command.split()
    try:
        return shlex.split(command)
    except ValueError as exc:
        raise ConfigError(ConfigErrorKind.NON_TERMINATED, value=command, cause=exc) from None


def shell_path() -> str:
    """The shell that runs shell-syntax commands: $SHELL, else /bin/sh."""
    return os.environ.get("SHELL") or DEFAULT_SHELL


def needs_shell(command: str) -> bool:
    """True if the command uses shell syntax (pipes, redirection, globbing...)."""
    return bool(_SHELL_CHARS_RE.search(command))


# =============================================================================
# TEMPLATE
# =============================================================================


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Arg:
    """An argument reference; ``index`` None means all arguments."""

    index: int | None
    modifier: str = ""


@dataclass(frozen=True)
class SeqNo:
    pass


@dataclass(frozen=True)
class SlotNo:
    pass


Segment = Literal | Arg | SeqNo | SlotNo


def _apply_modifier(value: str, modifier: str) -> str:
    if modifier == ".":
        return os.path.splitext(value)[0]
    if modifier == "/":
        return os.path.basename(value)
    if modifier == "//":
        return os.path.dirname(value) or "."
    if modifier == "/.":
        return os.path.splitext(os.path.basename(value))[0]
    return value


@dataclass(frozen=True)
class Template:
    """A compiled command template."""

    segments: tuple[Segment, ...]

    @classmethod
    def compile(cls, text: str) -> Template:
        segments: list[Segment] = []
        position = 0
        for match in _PLACEHOLDER_RE.finditer(text):
            if match.start() > position:
                segments.append(Literal(text[position:match.start()]))
            seq, slot, index, modifier = match.groups()
            if seq:
                segments.append(SeqNo())
            elif slot:
                segments.append(SlotNo())
            else:
                segments.append(Arg(int(index) if index else None, modifier or ""))
            position = match.end()
        if position < len(text):
            segments.append(Literal(text[position:]))
        return cls(tuple(segments))

    @property
    def references_args(self) -> bool:
        return any(isinstance(segment, Arg) for segment in self.segments)

    def render(
        self,
        args: Sequence[str],
        seq: int,
        slot: int,
        *,
        quote_values: bool = False,
    ) -> str:
        """Substitute every segment.

        Raises:
            CommandBuildError: An ``{N}`` exceeds the number of arguments
        """
        parts: list[str] = []
        for segment in self.segments:
            if isinstance(segment, Literal):
                parts.append(segment.text)
            elif isinstance(segment, SeqNo):
                parts.append(str(seq))
            elif isinstance(segment, SlotNo):
                parts.append(str(slot))
            else:
                if segment.index is None:
                    values = [_apply_modifier(a, segment.modifier) for a in args]
                else:
                    if segment.index > len(args):
                        raise CommandBuildError(segment.index, len(args), seq=seq)
                    values = [_apply_modifier(args[segment.index - 1], segment.modifier)]
                if quote_values:
                    values = [shlex.quote(v) for v in values]
                parts.append(" ".join(values))
        return "".join(parts)


# =============================================================================
# STRATEGIES
# =============================================================================


@runtime_checkable
class CommandStrategy(Protocol):
    """Builds a :class:`JobSpec` from one claim."""

    def build(self, claim: Claim, slot: int) -> JobSpec:
        ...


class TemplateStrategy:
    """Substitute arguments into a command template.

    Runs the command directly unless it needs a shell, in which case the
    whole rendered line goes to ``sh -c`` with every substituted value
    shell-quoted.
    """

    def __init__(self, command: str, *, shell: bool | None = None, quote: bool = False):
        self.command = command
        self.use_shell = needs_shell(command) if shell is None else shell
        if self.use_shell:
            self._line = Template.compile(command)
            self._words: tuple[Template, ...] = ()
            self._append = not self._line.references_args
        else:
            self._words = tuple(Template.compile(word) for word in tokenize(command, quote=quote))
            self._line = Template(())
            self._append = not any(word.references_args for word in self._words)

    def build(self, claim: Claim, slot: int) -> JobSpec:
        args = claim.args
        if self.use_shell:
            line = self._line.render(args, claim.seq, slot, quote_values=True)
            if self._append and args:
                line = " ".join([line, *(shlex.quote(a) for a in args)])
            return JobSpec(seq=claim.seq, slot=slot, args=args, argv=(shell_path(), "-c", line),
                           display=line, group_size=len(claim.records))

        argv = [word.render(args, claim.seq, slot) for word in self._words]
        if self._append:
            argv.extend(args)
        return JobSpec(seq=claim.seq, slot=slot, args=args, argv=tuple(argv),
                       display=shlex.join(argv), group_size=len(claim.records))


class CommandsStrategy:
    """No template: every input record is a complete shell command."""

    def build(self, claim: Claim, slot: int) -> JobSpec:
        line = "; ".join(" ".join(record) for record in claim.records)
        return JobSpec(seq=claim.seq, slot=slot, args=claim.args, argv=(shell_path(), "-c", line),
                       display=line, group_size=len(claim.records))


class PipeStrategy:
    """Records are written verbatim to one shared child's stdin.

    Each record becomes one newline-terminated line; a job's group of
    records is one flush boundary.
    """

    def __init__(self, command: str):
        self.command = command

    def build(self, claim: Claim, slot: int) -> JobSpec:
        data = "".join(" ".join(record) + "\n" for record in claim.records)
        return JobSpec(seq=claim.seq, slot=slot, args=claim.args,
                       payload=data.encode("utf-8", errors="surrogateescape"),
                       display=self.command, group_size=len(claim.records))


def shared_pipe_argv(command: str, *, shell: bool | None = None, quote: bool = False) -> tuple[str, ...]:
    """Argument vector for the single long-lived process of pipe mode."""
    use_shell = needs_shell(command) if shell is None else shell
    if use_shell:
        return (shell_path(), "-c", command)
    return tuple(tokenize(command, quote=quote))


def select_strategy(config: RunConfig) -> CommandStrategy:
    """Pick the execution strategy once for the whole run.

    Raises:
        ConfigError: The template cannot be tokenized
    """
    command = " ".join(config.command)
    if config.pipe:
        return PipeStrategy(command)
    if config.commands_mode:
        return CommandsStrategy()
    return TemplateStrategy(command, shell=config.shell, quote=config.quote)


__all__ = [
    "DEFAULT_SHELL",
    "Arg",
    "CommandStrategy",
    "CommandsStrategy",
    "Literal",
    "PipeStrategy",
    "SeqNo",
    "SlotNo",
    "Template",
    "TemplateStrategy",
    "needs_shell",
    "select_strategy",
    "shared_pipe_argv",
    "shell_path",
    "tokenize",
]
