"""Renderer-neutral view of a tool block."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

from ..changes.diff_engine import DiffLine, changed_only, format_diff
from .message_model import ToolStatus, ToolUseRecord

_SUMMARY_LIMIT = 140


@dataclass(slots=True)
class ToolBlockView:
    """Everything a view needs to draw one tool block."""

    tool_id: str
    title: str
    status: ToolStatus
    summary: str
    parameters: str
    result: str | None
    file_path: str | None = None
    change_id: str | None = None
    action_label: str | None = None
    diff_lines: tuple[DiffLine, ...] = ()
    diff_text: str = ""
    added_count: int = 0
    removed_count: int = 0
    expanded: bool = False

    @property
    def has_change(self) -> bool:
        return self.change_id is not None


def describe_tool_block(record: ToolUseRecord, *, max_diff_lines: int = 40) -> ToolBlockView:
    """Build the view for ``record`` in its current state."""

    path = record.target_path
    name = record.name or "tool"
    view = ToolBlockView(
        tool_id=record.id,
        title=f"{name}: {path}" if path else name,
        status=record.status,
        summary=summarize(path or (record.input if record.input else "")),
        parameters=format_parameters(record.input),
        result=format_result(record.result) if record.has_result else None,
        file_path=path,
        expanded=record.expanded,
    )
    change = record.linked_change
    if change is not None:
        preview = changed_only(change.diff, max_diff_lines)
        view.change_id = change.id
        view.action_label = change.action_label
        view.diff_lines = tuple(preview)
        view.diff_text = format_diff(preview)
        view.added_count = change.added_count
        view.removed_count = change.removed_count
    return view


def summarize(payload: Any) -> str:
    """Condense whitespace and cap the text at 140 characters."""

    text = payload if isinstance(payload, str) else _to_text(payload)
    condensed = " ".join(text.split())
    if not condensed:
        return "(empty)"
    if len(condensed) <= _SUMMARY_LIMIT:
        return condensed
    return f"{condensed[:_SUMMARY_LIMIT - 1].rstrip()}…"


def format_parameters(tool_input: Mapping[str, Any] | None) -> str:
    if not tool_input:
        return "{}"
    return _to_text(dict(tool_input))


def format_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    if result is None:
        return ""
    return _to_text(result)


def _to_text(value: Any) -> str:
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


__all__ = [
    "ToolBlockView",
    "describe_tool_block",
    "summarize",
    "format_parameters",
    "format_result",
]
