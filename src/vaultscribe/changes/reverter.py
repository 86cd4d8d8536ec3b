"""Apply revert/restore actions for ledger entries against the file store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from ..errors import ChangeNotFoundError, SnapshotError
from ..events import ChangeReverted, ChangeRestored, EventBus, NoticePosted
from ..vault.snapshots import SnapshotProvider
from .ledger import ChangeLedger
from .models import ChangeOperation, FileChange

LOGGER = logging.getLogger(__name__)

ChangeAction = Literal["revert", "restore"]


@dataclass(slots=True)
class ChangeActionResult:
    """Outcome of a revert or restore request.

    Attributes:
        change_id: The ledger id the action targeted.
        action: ``"revert"`` or ``"restore"``.
        ok: Whether the file store now reflects the requested state.
        message: Human-readable outcome, also posted as a notice.
        noop: True when the change was already in the requested state.
        change: The ledger entry after the action.
    """

    change_id: str
    action: ChangeAction
    ok: bool
    message: str
    noop: bool = False
    change: FileChange | None = None


class ChangeReverter:
    """Executes the revert/restore algorithm, using the ledger only for state.

    A failed file operation leaves the ``reverted`` flag untouched, so the
    action stays available and can be retried.
    """

    def __init__(
        self,
        ledger: ChangeLedger,
        provider: SnapshotProvider,
        event_bus: EventBus | None = None,
    ) -> None:
        self._ledger = ledger
        self._provider = provider
        self._bus = event_bus

    async def revert(self, change_id: str) -> ChangeActionResult:
        """Undo a recorded change.

        CREATE deletes the file (already absent counts as success); MODIFY
        writes ``old_content`` back, recreating the file if needed.

        Raises:
            ChangeNotFoundError: If the ledger has no entry for ``change_id``.
        """
        change = self._require(change_id)
        if change.reverted:
            LOGGER.debug("ChangeReverter.revert: %s already reverted", change_id)
            return ChangeActionResult(change_id, "revert", ok=True, message="Already reverted", noop=True, change=change)

        try:
            if change.operation is ChangeOperation.CREATE:
                existed = await self._provider.delete(change.file_path)
                message = f"Reverted: deleted {change.file_path}" if existed else f"Reverted: {change.file_path} was already removed"
            else:
                await self._provider.write(change.file_path, change.old_content or "")
                message = f"Reverted changes to {change.file_path}"
        except SnapshotError as exc:
            return self._failed(change, "revert", exc)

        self._ledger.mark_reverted(change_id)
        LOGGER.info("Reverted %s (%s)", change.file_path, change.operation.value)
        self._publish(ChangeReverted(change_id=change_id, file_path=change.file_path))
        self._publish(NoticePosted(message=message))
        return ChangeActionResult(change_id, "revert", ok=True, message=message, change=change)

    async def restore(self, change_id: str) -> ChangeActionResult:
        """Re-apply a reverted change by writing ``new_content``.

        Raises:
            ChangeNotFoundError: If the ledger has no entry for ``change_id``.
        """
        change = self._require(change_id)
        if not change.reverted:
            LOGGER.debug("ChangeReverter.restore: %s is not reverted", change_id)
            return ChangeActionResult(change_id, "restore", ok=True, message="Already applied", noop=True, change=change)

        try:
            await self._provider.write(change.file_path, change.new_content)
        except SnapshotError as exc:
            return self._failed(change, "restore", exc)

        self._ledger.mark_restored(change_id)
        message = f"Restored {change.file_path}"
        LOGGER.info("Restored %s (%s)", change.file_path, change.operation.value)
        self._publish(ChangeRestored(change_id=change_id, file_path=change.file_path))
        self._publish(NoticePosted(message=message))
        return ChangeActionResult(change_id, "restore", ok=True, message=message, change=change)

    async def toggle(self, change_id: str) -> ChangeActionResult:
        """Run whichever action the change's label currently offers."""
        change = self._require(change_id)
        if change.reverted:
            return await self.restore(change_id)
        return await self.revert(change_id)

    def _require(self, change_id: str) -> FileChange:
        change = self._ledger.get(change_id)
        if change is None:
            raise ChangeNotFoundError(message=f"No recorded change with id {change_id}", change_id=change_id)
        return change

    def _failed(self, change: FileChange, action: ChangeAction, exc: SnapshotError) -> ChangeActionResult:
        LOGGER.warning("Could not %s %s: %s", action, change.file_path, exc)
        message = f"Error during {action} of {change.file_path}: {exc.message}"
        self._publish(NoticePosted(message=message, level="error"))
        return ChangeActionResult(change.id, action, ok=False, message=message, change=change)

    def _publish(self, event: ChangeReverted | ChangeRestored | NoticePosted) -> None:
        if self._bus is not None:
            self._bus.publish(event)


__all__ = [
    "ChangeAction",
    "ChangeActionResult",
    "ChangeReverter",
]
