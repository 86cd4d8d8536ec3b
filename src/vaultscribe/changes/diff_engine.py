"""Line-level diffs between two text blobs.

``compute_diff`` returns the full ordered change list that a
:class:`~vaultscribe.changes.models.FileChange` keeps for fidelity;
``changed_only`` is the capped projection used when rendering a preview.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

__all__ = [
    "DiffKind",
    "DiffLine",
    "compute_diff",
    "changed_only",
    "unified_diff",
    "format_diff",
    "split_lines",
    "replay_diff",
    "NO_NEWLINE_MARKER",
]

NO_NEWLINE_MARKER = "\\ No newline at end of file"

_FORMAT_PREFIXES = {
    "added": "+ ",
    "removed": "- ",
    "unchanged": "  ",
}


class DiffKind(str, Enum):
    """Kind of a single diff entry."""

    ADDED = "added"
    REMOVED = "removed"
    UNCHANGED = "unchanged"
    # Only produced by ``changed_only`` for its "N more lines" marker.
    ELIDED = "elided"


@dataclass(slots=True, frozen=True)
class DiffLine:
    """One line of a diff with the side(s) it belongs to.

    ``newline`` is False only for a final line that has no line terminator,
    so ``"a"`` and ``"a\\n"`` produce different entries.
    """

    kind: DiffKind
    text: str
    newline: bool = True

    @property
    def is_change(self) -> bool:
        return self.kind in (DiffKind.ADDED, DiffKind.REMOVED)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "text": self.text}
        if not self.newline:
            payload["newline"] = False
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "DiffLine":
        return cls(
            kind=DiffKind(payload["kind"]),
            text=str(payload.get("text", "")),
            newline=bool(payload.get("newline", True)),
        )


def split_lines(text: Any) -> list[str]:
    """Split ``text`` into lines, keeping blank lines as empty entries.

    A single trailing newline terminates the last line rather than opening an
    empty one. Non-string input is treated as an empty document.
    """

    if not isinstance(text, str) or not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def _keyed_lines(text: Any) -> list[tuple[str, bool]]:
    lines = split_lines(text)
    keyed = [(line, True) for line in lines]
    if keyed and not text.endswith("\n"):
        keyed[-1] = (lines[-1], False)
    return keyed


def compute_diff(old_text: Any, new_text: Any) -> tuple[DiffLine, ...]:
    """Return the ordered line diff turning ``old_text`` into ``new_text``.

    Replaying UNCHANGED + ADDED entries in order yields ``new_text`` and
    UNCHANGED + REMOVED yields ``old_text`` (see :func:`replay_diff`); a
    missing final newline counts as a change of the last line. Never raises:
    a missing or non-string side is empty.
    """

    old_lines = _keyed_lines(old_text)
    new_lines = _keyed_lines(new_text)
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    entries: list[DiffLine] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            entries.extend(DiffLine(DiffKind.UNCHANGED, line, eol) for line, eol in old_lines[i1:i2])
            continue
        if tag in ("delete", "replace"):
            entries.extend(DiffLine(DiffKind.REMOVED, line, eol) for line, eol in old_lines[i1:i2])
        if tag in ("insert", "replace"):
            entries.extend(DiffLine(DiffKind.ADDED, line, eol) for line, eol in new_lines[j1:j2])
    return tuple(entries)


def replay_diff(diff: Sequence[DiffLine], *, side: str = "new") -> str:
    """Rebuild the exact ``"old"`` or ``"new"`` text from a full diff."""

    if side not in ("old", "new"):
        raise ValueError(f"side must be 'old' or 'new', not {side!r}")
    wanted = DiffKind.ADDED if side == "new" else DiffKind.REMOVED
    return "".join(
        entry.text + ("\n" if entry.newline else "")
        for entry in diff
        if entry.kind is DiffKind.UNCHANGED or entry.kind is wanted
    )


def changed_only(diff: Sequence[DiffLine], max_lines: int) -> list[DiffLine]:
    """Project ``diff`` to its added/removed entries, capped at ``max_lines``.

    When entries are dropped, a trailing ELIDED entry reads ``"N more lines"``.
    """

    changes = [entry for entry in diff if entry.is_change]
    limit = max(0, int(max_lines))
    if len(changes) <= limit:
        return changes
    hidden = len(changes) - limit
    label = "line" if hidden == 1 else "lines"
    projected = changes[:limit]
    projected.append(DiffLine(DiffKind.ELIDED, f"{hidden} more {label}"))
    return projected


def unified_diff(old_text: Any, new_text: Any, *, context: int = 3) -> str:
    """Return unified diff hunks for the two texts, without file header lines.

    A last line without a terminator is followed by the usual
    ``\\ No newline at end of file`` marker.
    """

    old_lines = [line + "\n" if eol else line for line, eol in _keyed_lines(old_text)]
    new_lines = [line + "\n" if eol else line for line, eol in _keyed_lines(new_text)]
    body = list(difflib.unified_diff(old_lines, new_lines, n=max(0, int(context))))
    rendered: list[str] = []
    # The first two lines are the ---/+++ file headers.
    for line in body[2:]:
        if line.endswith("\n"):
            rendered.append(line[:-1])
        else:
            rendered.extend((line, NO_NEWLINE_MARKER))
    return "\n".join(rendered)


def format_diff(diff: Sequence[DiffLine]) -> str:
    """Render diff entries as ``+ ``/``- ``/``  `` prefixed text."""

    rendered: list[str] = []
    for entry in diff:
        if entry.kind is DiffKind.ELIDED:
            rendered.append(f"… {entry.text}")
            continue
        rendered.append(f"{_FORMAT_PREFIXES[entry.kind.value]}{entry.text}")
        if not entry.newline:
            rendered.append(NO_NEWLINE_MARKER)
    return "\n".join(rendered)
