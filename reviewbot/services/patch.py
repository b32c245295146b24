"""Unified-diff helpers for placing review comments.

Only the subset of unified-diff syntax GitHub emits in the ``patch`` field of
a compare or pull-request file entry is understood: hunk headers followed by
context (`` ``), deletion (``-``) and addition (``+``) lines.
"""

from __future__ import annotations

import re
from typing import Dict, Iterator, List, Tuple

from reviewbot.models.review import LineRange

PositionMap = Dict[int, int]

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_NO_NEWLINE_MARKER = "\\"


def _parse_header(line: str) -> Tuple[int, int] | None:
    """Return ``(new_start, new_count)`` for a hunk header line."""

    match = _HUNK_HEADER.match(line)
    if match is None:
        return None
    new_start = int(match.group(3))
    new_count = int(match.group(4)) if match.group(4) is not None else 1
    return new_start, new_count


def _patch_lines(patch: str) -> List[str]:
    """Split on line feeds only; form feeds and other separators stay inside a line."""

    lines = [line[:-1] if line.endswith("\r") else line for line in patch.split("\n")]
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _first_hunk(patch: str | None) -> Tuple[int, Tuple[int, int]] | None:
    """Locate the first hunk header: ``(line index, (new_start, new_count))``."""

    if not patch:
        return None
    for index, line in enumerate(_patch_lines(patch)):
        header = _parse_header(line)
        if header is not None:
            return index, header
    return None


def parse_range(patch: str | None) -> LineRange:
    """Return the in-scope line range of a patch.

    Only the first hunk counts: ``@@ -a,b +c,d @@`` gives ``LineRange(c, c + d)``.
    Later hunks in the same file are out of scope.
    """

    located = _first_hunk(patch)
    if located is None:
        return LineRange.empty()
    _, (new_start, new_count) = located
    return LineRange(start=new_start, end=new_start + new_count)


def _walk(patch: str) -> Iterator[Tuple[int, int | None, str]]:
    """Yield ``(diff_position, file_line, kind)`` for every body line."""

    lines = _patch_lines(patch)
    located = _first_hunk(patch)
    if located is None:
        return
    start_index, (new_start, _) = located

    diff_position = 0
    file_line = new_start - 1
    for line in lines[start_index + 1:]:
        diff_position += 1
        if line.startswith("@@"):
            header = _parse_header(line)
            if header is not None:
                file_line = header[0] - 1
            yield diff_position, None, "hunk"
        elif line.startswith("-"):
            yield diff_position, None, "deletion"
        elif line.startswith(_NO_NEWLINE_MARKER):
            yield diff_position, None, "marker"
        else:
            file_line += 1
            yield diff_position, file_line, "addition" if line.startswith("+") else "context"


def build_position_map(patch: str | None) -> PositionMap:
    """Map new-file line numbers of added lines to GitHub diff positions.

    Position 1 is the line right below the first hunk header. Every later line,
    including deletions, context and subsequent hunk headers, takes the next
    position. Context and deleted lines never become keys.
    """

    if not patch:
        return {}
    return {
        file_line: diff_position
        for diff_position, file_line, kind in _walk(patch)
        if kind == "addition" and file_line is not None
    }
