"""Ledger entry models for file changes made by agent tools.

These dataclasses are owned by :class:`~vaultscribe.changes.ledger.ChangeLedger`
and referenced from tool records so the UI can render diffs and revert/restore
actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .diff_engine import DiffKind, DiffLine


def _utcnow() -> datetime:
    """Return current UTC time."""
    return datetime.now(timezone.utc)


class ChangeOperation(str, Enum):
    """How a tool affected a file.

    Values:
        CREATE: The file did not exist before the tool ran.
        MODIFY: The file existed and its content was replaced.
    """

    CREATE = "create"
    MODIFY = "modify"

    @classmethod
    def derive(cls, old_content: str | None) -> "ChangeOperation":
        """Return the operation implied by the before-state."""
        return cls.CREATE if old_content is None else cls.MODIFY


@dataclass(slots=True)
class FileChange:
    """A recorded before/after pair for one file-mutating tool invocation.

    Attributes:
        id: Opaque token, stable for the lifetime of the ledger entry.
        file_path: Vault-relative path of the file.
        operation: CREATE when ``old_content`` is ``None``, MODIFY otherwise.
        old_content: Text before the operation, ``None`` if the file did not exist.
        new_content: Text after the operation.
        diff: Full line diff computed once at record time.
        unified_diff: Unified diff hunks for the same pair.
        timestamp: Creation instant.
        reverted: True after a successful revert, False after a restore.
    """

    id: str
    file_path: str
    operation: ChangeOperation
    old_content: str | None
    new_content: str
    diff: tuple[DiffLine, ...] = ()
    unified_diff: str = ""
    timestamp: datetime = field(default_factory=_utcnow)
    reverted: bool = False

    def __post_init__(self) -> None:
        if self.old_content is None and self.operation is not ChangeOperation.CREATE:
            raise ValueError("A change without previous content must be a CREATE operation")

    @property
    def action_label(self) -> str:
        """Label for the action currently available on this change."""
        return "Restore" if self.reverted else "Revert"

    @property
    def added_count(self) -> int:
        return sum(1 for entry in self.diff if entry.kind is DiffKind.ADDED)

    @property
    def removed_count(self) -> int:
        return sum(1 for entry in self.diff if entry.kind is DiffKind.REMOVED)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the entry as a flat record."""

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "file_path": self.file_path,
            "operation": self.operation.value,
            "old_content": self.old_content,
            "new_content": self.new_content,
            "diff": [entry.to_dict() for entry in self.diff],
            "unified_diff": self.unified_diff,
            "reverted": self.reverted,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FileChange":
        """Rebuild an entry from :meth:`to_dict` output."""

        raw_timestamp = payload.get("timestamp")
        timestamp = datetime.fromisoformat(raw_timestamp) if isinstance(raw_timestamp, str) else _utcnow()
        old_content = payload.get("old_content")
        return cls(
            id=str(payload["id"]),
            file_path=str(payload["file_path"]),
            operation=ChangeOperation(payload.get("operation") or ChangeOperation.derive(old_content).value),
            old_content=old_content if isinstance(old_content, str) else None,
            new_content=str(payload.get("new_content") or ""),
            diff=tuple(DiffLine.from_dict(entry) for entry in payload.get("diff") or ()),
            unified_diff=str(payload.get("unified_diff") or ""),
            timestamp=timestamp,
            reverted=bool(payload.get("reverted", False)),
        )


__all__ = [
    "ChangeOperation",
    "FileChange",
]
