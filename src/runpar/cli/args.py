"""
Positional argument handling for the ``runpar`` command line.

Everything after the options is one flat list of words::

    runpar gzip -9 {} ::: a.txt b.txt :::: more.lst ::::+ names.lst
           └─ command ┘ └──── args ───┘ └── files ─┘ └─ linked files ┘

The words before the first separator form the command template; each
separator opens a new input list. With no list at all, records are read
from standard input (or from ``--input-file``).
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TextIO

from runpar.core.errors import ConfigError, ConfigErrorKind, FileAccessError
from runpar.input.source import InputList, InputSource


class ListKind(str, Enum):
    ARGS = "args"
    FILES = "files"


SEPARATORS: dict[str, tuple[ListKind, bool]] = {
    ":::": (ListKind.ARGS, False),
    ":::+": (ListKind.ARGS, True),
    "::::": (ListKind.FILES, False),
    "::::+": (ListKind.FILES, True),
}


@dataclass
class ListSpec:
    """One input list as written on the command line."""

    kind: ListKind
    linked: bool = False
    values: list[str] = field(default_factory=list)


def split_positionals(tokens: Sequence[str]) -> tuple[list[str], list[ListSpec]]:
    """Separate the command template from the input lists.

    Raises:
        ConfigError: INVALID_ARGUMENT for an unknown option before the
            command, NO_ARGUMENTS for a separator with nothing after it
    """
    command: list[str] = []
    lists: list[ListSpec] = []
    current: ListSpec | None = None

    for token in tokens:
        if token in SEPARATORS:
            kind, linked = SEPARATORS[token]
            current = ListSpec(kind, linked)
            lists.append(current)
        elif current is not None:
            current.values.append(token)
        elif not command and token.startswith("-") and token != "-":
            raise ConfigError(ConfigErrorKind.INVALID_ARGUMENT, value=token)
        else:
            command.append(token)

    if any(not spec.values for spec in lists):
        raise ConfigError(ConfigErrorKind.NO_ARGUMENTS)
    return command, lists


def build_source(
    lists: Sequence[ListSpec],
    *,
    input_file: str | None = None,
    stdin: TextIO | None = None,
) -> InputSource:
    """Turn parsed input lists into an :class:`InputSource`.

    Raises:
        ConfigError: REDIR_FILE if ``input_file`` cannot be read, FILE if
            a ``::::`` file cannot be read
    """
    input_lists: list[InputList] = []

    if input_file is not None:
        try:
            input_lists.append(InputList.from_files([input_file]))
        except FileAccessError as exc:
            raise ConfigError(ConfigErrorKind.REDIR_FILE, value=input_file, cause=exc) from exc

    for spec in lists:
        if spec.kind is ListKind.ARGS:
            input_lists.append(InputList.from_args(spec.values, linked=spec.linked))
            continue
        try:
            input_lists.append(InputList.from_files(spec.values, linked=spec.linked))
        except FileAccessError as exc:
            raise ConfigError.from_file_error(exc) from exc

    if not input_lists:
        input_lists.append(InputList.from_stream(stdin if stdin is not None else sys.stdin))
    return InputSource(input_lists)


__all__ = ["SEPARATORS", "ListKind", "ListSpec", "build_source", "split_positionals"]
