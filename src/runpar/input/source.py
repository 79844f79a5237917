"""Input Source - a lazy, possibly infinite stream of input records.

Records come from standard input, from literal arguments (``:::``) or
from the lines of files (``::::``). Several input lists combine into
multi-value records:

::

    runpar echo ::: a b ::: 1 2        →  (a,1) (a,2) (b,1) (b,2)   product
    runpar echo ::: a b :::+ 1 2       →  (a,1) (b,2)               linked

The first list varies slowest. Lists that must be re-read for each
outer value (every list but the first) are re-opened through their
factory; standard input can only be the first list.

The total record count is known whenever every list is finite and
countable (arguments, files); it drives the ETA estimate. Streaming
stdin leaves the total unknown.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TextIO

from runpar.core.errors import FileAccessError, InputReadError
from runpar.input.files import count_lines, decode_stream, iter_lines

InputRecord = tuple[str, ...]


@dataclass(frozen=True)
class InputList:
    """One input list: a re-openable sequence of values.

    Attributes:
        name: Human-readable origin (``stdin``, ``args``, a file path)
        opener: Returns a fresh iterator over the values
        total: Number of values, or None when unknown
        linked: Zip with the previous list instead of forming a product
        reopenable: False for one-shot streams such as stdin
    """

    name: str
    opener: Callable[[], Iterator[str]]
    total: int | None
    linked: bool = False
    reopenable: bool = True

    @classmethod
    def from_args(cls, values: Sequence[str], *, linked: bool = False) -> InputList:
        items = tuple(values)
        return cls(name="args", opener=lambda: iter(items), total=len(items), linked=linked)

    @classmethod
    def from_files(cls, paths: Sequence[str | Path], *, linked: bool = False) -> InputList:
        """Lines of each file, in order. Counting opens every file up-front."""
        files = tuple(Path(p) for p in paths)
        total = sum(count_lines(p) for p in files)

        def opener() -> Iterator[str]:
            for path in files:
                yield from iter_lines(path)

        name = ",".join(str(p) for p in files)
        return cls(name=name, opener=opener, total=total, linked=linked)

    @classmethod
    def from_stream(cls, stream: TextIO, name: str = "stdin") -> InputList:
        def opener() -> Iterator[str]:
            for line in decode_stream(stream):
                yield line.rstrip("\n")

        return cls(name=name, opener=opener, total=None, reopenable=False)


class InputSource:
    """Iterator over :data:`InputRecord` tuples built from input lists.

    Read failures surface as :class:`InputReadError`, which is fatal for
    the run rather than for any single record.
    """

    def __init__(self, lists: Sequence[InputList]):
        if not lists:
            raise ValueError("InputSource needs at least one input list")
        for position, item in enumerate(lists):
            if position > 0 and not item.reopenable:
                raise ValueError(f"{item.name} can only be the first input list")
        if lists[0].linked:
            lists = [replace(lists[0], linked=False), *lists[1:]]
        self._groups = _group_linked(lists)
        self.total = _total(self._groups)
        self._iterator: Iterator[InputRecord] = _product(self._groups)

    # ── Constructors ─────────────────────────────────────────────────

    @classmethod
    def from_args(cls, values: Iterable[str]) -> InputSource:
        return cls([InputList.from_args(list(values))])

    @classmethod
    def from_files(cls, paths: Sequence[str | Path]) -> InputSource:
        return cls([InputList.from_files(paths)])

    @classmethod
    def from_stdin(cls, stream: TextIO | None = None) -> InputSource:
        return cls([InputList.from_stream(stream if stream is not None else sys.stdin)])

    # ── Iterator protocol ────────────────────────────────────────────

    def __iter__(self) -> InputSource:
        return self

    def __next__(self) -> InputRecord:
        try:
            return next(self._iterator)
        except FileAccessError as exc:
            raise InputReadError(str(exc.path), exc) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise InputReadError(self.describe(), exc) from exc

    def describe(self) -> str:
        return " x ".join("+".join(item.name for item in group) for group in self._groups)


# =============================================================================
# COMBINATION HELPERS
# =============================================================================


def _group_linked(lists: Sequence[InputList]) -> list[list[InputList]]:
    groups: list[list[InputList]] = []
    for item in lists:
        if item.linked and groups:
            groups[-1].append(item)
        else:
            groups.append([item])
    return groups


def _total(groups: list[list[InputList]]) -> int | None:
    total = 1
    for group in groups:
        if any(item.total is None for item in group):
            return None
        total *= min(item.total for item in group)  # type: ignore[type-var]
    return total


def _open_group(group: list[InputList]) -> Iterator[InputRecord]:
    return zip(*(item.opener() for item in group))


def _product(groups: list[list[InputList]]) -> Iterator[InputRecord]:
    """Lazy cartesian product; only the outermost group is read once."""
    head, rest = groups[0], groups[1:]
    for values in _open_group(head):
        if not rest:
            yield values
            continue
        for tail in _product(rest):
            yield values + tail


__all__ = ["InputList", "InputRecord", "InputSource"]
