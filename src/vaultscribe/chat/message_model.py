"""Chat message and tool record data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from ..changes.models import FileChange


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)

ChatRole = Literal["user", "assistant", "system", "tool"]


class Marker(Enum):
    """Sentinels distinguishing "no value yet" from legitimate ``None`` values."""

    NOT_CAPTURED = "not_captured"
    NOT_APPLICABLE = "not_applicable"
    NO_RESULT = "no_result"

    def __repr__(self) -> str:
        return f"<{self.name}>"


NOT_CAPTURED = Marker.NOT_CAPTURED
NOT_APPLICABLE = Marker.NOT_APPLICABLE
NO_RESULT = Marker.NO_RESULT

FileState = Union[str, None, Marker]


class ToolStatus(str, Enum):
    """Lifecycle of a tool block as the user sees it."""

    PLACEHOLDER = "placeholder"
    RUNNING = "running"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"


@dataclass(slots=True)
class ToolUseRecord:
    """Merged view of every stream event seen for one tool id.

    ``file_state_before`` is ``NOT_CAPTURED`` until the before-state read has
    run, ``None`` when the file did not exist, and ``NOT_APPLICABLE`` for
    tools that do not mutate files. ``result`` stays ``NO_RESULT`` until a
    result event arrives; ``None`` is a legitimate result.
    """

    id: str
    name: str = ""
    input: Dict[str, Any] = field(default_factory=dict)
    result: Any = NO_RESULT
    file_state_before: FileState = NOT_CAPTURED
    linked_change: Optional[FileChange] = None
    render_handle: Any = None
    expanded: bool = False
    is_placeholder: bool = False
    status: ToolStatus = ToolStatus.RUNNING

    @property
    def has_result(self) -> bool:
        return self.result is not NO_RESULT

    @property
    def before_captured(self) -> bool:
        return self.file_state_before is not NOT_CAPTURED

    @property
    def target_path(self) -> Optional[str]:
        """Vault-relative path from the tool input, if one was supplied."""

        for key in ("file_path", "filePath", "path"):
            value = self.input.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None

    def reset(self, name: str, tool_input: Dict[str, Any]) -> None:
        """Start the record over for a re-invocation of the same id."""

        self.name = name
        self.input = dict(tool_input)
        self.result = NO_RESULT
        self.file_state_before = NOT_CAPTURED
        self.linked_change = None
        self.is_placeholder = False
        self.status = ToolStatus.RUNNING


@dataclass(slots=True)
class ChatMessage:
    """Represents a row inside the chat transcript."""

    role: ChatRole
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        return {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


__all__ = [
    "ChatRole",
    "Marker",
    "NOT_CAPTURED",
    "NOT_APPLICABLE",
    "NO_RESULT",
    "FileState",
    "ToolStatus",
    "ToolUseRecord",
    "ChatMessage",
]
