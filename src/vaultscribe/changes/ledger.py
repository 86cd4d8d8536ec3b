"""Change ledger domain service.

Holds the :class:`FileChange` entries produced during a chat and the
``reverted`` flag that drives the Revert/Restore action for each of them.
File I/O is not performed here; see :mod:`vaultscribe.changes.reverter`.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Sequence

from .diff_engine import compute_diff, unified_diff
from .models import ChangeOperation, FileChange

LOGGER = logging.getLogger(__name__)


class ChangeLedger:
    """Owned mapping from change id to :class:`FileChange`.

    One ledger exists per chat; it is created with the chat and discarded
    with it. Revert/restore only ever flip ``FileChange.reverted``; the
    recorded contents and diff are immutable once recorded.
    """

    def __init__(self, *, clock: Callable[[], int] = time.time_ns) -> None:
        """Initialize an empty ledger.

        Args:
            clock: Source of the time-based id prefix, in nanoseconds.
        """
        self._changes: dict[str, FileChange] = {}
        self._clock = clock

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._changes)

    def __contains__(self, change_id: object) -> bool:
        return change_id in self._changes

    def __iter__(self) -> Iterator[FileChange]:
        return iter(tuple(self._changes.values()))

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def record(
        self,
        file_path: str,
        operation: ChangeOperation | str | None,
        old_content: str | None,
        new_content: str,
    ) -> FileChange:
        """Record a before/after pair and return the new ledger entry.

        The operation is derived from ``old_content``: a missing before-state
        always means CREATE. A conflicting ``operation`` argument is logged and
        ignored.
        """
        derived = ChangeOperation.derive(old_content)
        if operation is not None and ChangeOperation(operation) is not derived:
            LOGGER.debug(
                "ChangeLedger.record: operation %s overridden by before-state (%s) for %s",
                operation,
                derived.value,
                file_path,
            )
        new_text = new_content if isinstance(new_content, str) else ""
        change = FileChange(
            id=self._allocate_id(file_path),
            file_path=file_path,
            operation=derived,
            old_content=old_content,
            new_content=new_text,
            diff=compute_diff(old_content or "", new_text),
            unified_diff=unified_diff(old_content or "", new_text),
            timestamp=datetime.now(timezone.utc),
        )
        self._changes[change.id] = change
        LOGGER.debug(
            "ChangeLedger.record: id=%s, path=%s, operation=%s, +%d/-%d",
            change.id,
            file_path,
            derived.value,
            change.added_count,
            change.removed_count,
        )
        return change

    def get(self, change_id: str) -> FileChange | None:
        """Return the entry for ``change_id`` or ``None``."""
        return self._changes.get(change_id)

    def mark_reverted(self, change_id: str) -> FileChange | None:
        """Set the reverted flag; a no-op when already reverted."""
        return self._set_reverted(change_id, True)

    def mark_restored(self, change_id: str) -> FileChange | None:
        """Clear the reverted flag; a no-op when not reverted."""
        return self._set_reverted(change_id, False)

    def clear(self, change_id: str) -> None:
        """Remove an entry entirely. Unknown ids are ignored."""
        if self._changes.pop(change_id, None) is not None:
            LOGGER.debug("ChangeLedger.clear: id=%s", change_id)

    def clear_all(self) -> None:
        """Drop every entry."""
        self._changes.clear()

    # ------------------------------------------------------------------
    # Persistence shape
    # ------------------------------------------------------------------

    def export_records(self) -> list[dict[str, Any]]:
        """Return all entries as flat records, oldest first."""
        return [change.to_dict() for change in self._changes.values()]

    def load_records(self, records: Sequence[Mapping[str, Any]]) -> int:
        """Load entries produced by :meth:`export_records`.

        Invalid records are skipped with a warning. Returns the number loaded.
        """
        loaded = 0
        for record in records:
            try:
                change = FileChange.from_dict(record)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("ChangeLedger.load_records: skipping invalid record: %s", exc)
                continue
            self._changes[change.id] = change
            loaded += 1
        return loaded

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _set_reverted(self, change_id: str, value: bool) -> FileChange | None:
        change = self._changes.get(change_id)
        if change is None:
            LOGGER.debug("ChangeLedger: unknown change id %s", change_id)
            return None
        if change.reverted is not value:
            change.reverted = value
            LOGGER.debug("ChangeLedger: id=%s reverted=%s", change_id, value)
        return change

    def _allocate_id(self, file_path: str) -> str:
        base = f"{self._clock()}_{file_path}"
        candidate = base
        suffix = 2
        while candidate in self._changes:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate


__all__ = ["ChangeLedger"]
