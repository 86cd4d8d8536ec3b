"""Registry merging every stream event for a tool id into one record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Mapping

from ..changes.ledger import ChangeLedger
from ..errors import SnapshotError
from ..events import ChangeRecorded, EventBus
from ..services.settings import DEFAULT_MUTATION_TOOLS
from ..vault.snapshots import SnapshotProvider
from .message_model import NOT_APPLICABLE, NOT_CAPTURED, FileState, ToolStatus, ToolUseRecord

LOGGER = logging.getLogger(__name__)


class InvocationDisposition(str, Enum):
    """How :meth:`ToolUseRegistry.upsert_invocation` treated the event."""

    NEW = "new"
    FILLED_PLACEHOLDER = "filled_placeholder"
    UPDATED = "updated"
    RESET = "reset"


@dataclass(slots=True)
class InvocationUpsert:
    """Result of an invocation upsert.

    ``was_placeholder`` tells the reducer whether an existing placeholder
    block must be replaced instead of appending a new one.
    """

    record: ToolUseRecord
    was_placeholder: bool
    disposition: InvocationDisposition = InvocationDisposition.NEW

    @property
    def needs_new_block(self) -> bool:
        return self.disposition in (InvocationDisposition.NEW, InvocationDisposition.RESET)


class ToolUseRegistry:
    """Owns the tool-id to :class:`ToolUseRecord` mapping for one chat.

    At most one record exists per id: a progress-only placeholder and the
    later full invocation are the same object, filled in place.
    """

    def __init__(
        self,
        ledger: ChangeLedger,
        provider: SnapshotProvider,
        mutation_tools: Iterable[str] = DEFAULT_MUTATION_TOOLS,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._ledger = ledger
        self._provider = provider
        self._mutation_tools = frozenset(mutation_tools)
        self._bus = event_bus
        self._records: Dict[str, ToolUseRecord] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> ChangeLedger:
        return self._ledger

    @property
    def mutation_tools(self) -> frozenset[str]:
        return self._mutation_tools

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._records

    def __iter__(self) -> Iterator[ToolUseRecord]:
        return iter(tuple(self._records.values()))

    def get(self, tool_id: str) -> ToolUseRecord | None:
        return self._records.get(tool_id)

    def ids(self) -> tuple[str, ...]:
        return tuple(self._records)

    def pending(self) -> tuple[ToolUseRecord, ...]:
        """Records still waiting for a result."""
        return tuple(record for record in self._records.values() if not record.has_result)

    def is_mutation_tool(self, name: str) -> bool:
        return name in self._mutation_tools

    def find_by_change(self, change_id: str) -> ToolUseRecord | None:
        """Return the record whose linked change has ``change_id``."""
        for record in self._records.values():
            if record.linked_change is not None and record.linked_change.id == change_id:
                return record
        return None

    # ------------------------------------------------------------------
    # Event merging
    # ------------------------------------------------------------------

    def begin_or_get_placeholder(self, tool_id: str, name: str) -> ToolUseRecord:
        """Return the record for ``tool_id``, creating a placeholder if unseen."""

        record = self._records.get(tool_id)
        if record is not None:
            return record
        record = ToolUseRecord(
            id=tool_id,
            name=name,
            is_placeholder=True,
            status=ToolStatus.PLACEHOLDER,
        )
        self._records[tool_id] = record
        LOGGER.debug("ToolUseRegistry: placeholder for %s (%s)", tool_id, name)
        return record

    def upsert_invocation(self, tool_id: str, name: str, tool_input: Mapping[str, Any] | None) -> InvocationUpsert:
        """Merge a full invocation description into the record for ``tool_id``.

        A repeated invocation replaces ``name``/``input`` of the same record.
        An invocation for an id that already has a result starts the record
        over; its earlier change, if any, stays in the ledger.
        """

        payload = dict(tool_input or {})
        record = self._records.get(tool_id)
        if record is None:
            record = ToolUseRecord(id=tool_id, name=name, input=payload)
            self._records[tool_id] = record
            return InvocationUpsert(record, was_placeholder=False, disposition=InvocationDisposition.NEW)

        if record.is_placeholder:
            record.name = name
            record.input = payload
            record.is_placeholder = False
            if not record.has_result:
                record.status = ToolStatus.RUNNING
            LOGGER.debug("ToolUseRegistry: filled placeholder %s (%s)", tool_id, name)
            return InvocationUpsert(record, was_placeholder=True, disposition=InvocationDisposition.FILLED_PLACEHOLDER)

        if record.has_result:
            LOGGER.debug("ToolUseRegistry: id %s reused after result; starting over as %s", tool_id, name)
            record.reset(name, payload)
            return InvocationUpsert(record, was_placeholder=False, disposition=InvocationDisposition.RESET)

        if record.name != name:
            LOGGER.debug("ToolUseRegistry: id %s renamed %s -> %s", tool_id, record.name, name)
        record.name = name
        record.input = payload
        return InvocationUpsert(record, was_placeholder=False, disposition=InvocationDisposition.UPDATED)

    async def capture_before_state(self, tool_id: str, provider: SnapshotProvider | None = None) -> FileState:
        """Snapshot the target file of a mutation-capable tool, once per id.

        Returns the stored before-state. Read failures are logged and leave
        the field unset.
        """

        record = self._records.get(tool_id)
        if record is None:
            LOGGER.warning("ToolUseRegistry.capture_before_state: unknown tool id %s", tool_id)
            return NOT_CAPTURED
        if record.before_captured:
            return record.file_state_before
        if not self.is_mutation_tool(record.name):
            record.file_state_before = NOT_APPLICABLE
            return NOT_APPLICABLE

        path = record.target_path
        if path is None:
            LOGGER.warning("ToolUseRegistry: %s call %s has no file path in its input", record.name, tool_id)
            return NOT_CAPTURED

        source = provider or self._provider
        try:
            before = await source.read(path)
        except SnapshotError as exc:
            LOGGER.warning("Could not capture before-state of %s for %s: %s", path, tool_id, exc)
            return NOT_CAPTURED
        record.file_state_before = before
        LOGGER.debug(
            "ToolUseRegistry: before-state for %s captured (%s)",
            path,
            "absent" if before is None else f"{len(before)} chars",
        )
        return before

    async def apply_result(self, tool_id: str, content: Any) -> ToolUseRecord | None:
        """Attach a result and, for mutation tools, record the file change."""

        record = self._records.get(tool_id)
        if record is None:
            LOGGER.warning("ToolUseRegistry.apply_result: result for unknown tool id %s", tool_id)
            return None

        record.result = content
        record.status = ToolStatus.COMPLETE
        if record.linked_change is not None:
            return record
        if not self.is_mutation_tool(record.name) or record.file_state_before in (NOT_CAPTURED, NOT_APPLICABLE):
            return record

        path = record.target_path
        if path is None:
            return record
        try:
            after = await self._provider.read(path)
        except SnapshotError as exc:
            LOGGER.warning("Could not read %s after %s: %s", path, tool_id, exc)
            return record

        before = record.file_state_before
        if after is None:
            LOGGER.warning("ToolUseRegistry: %s is missing after %s; no change recorded", path, tool_id)
            return record
        if before == after:
            LOGGER.debug("ToolUseRegistry: %s unchanged by %s", path, tool_id)
            return record

        change = self._ledger.record(path, None, before, after)
        record.linked_change = change
        if self._bus is not None:
            self._bus.publish(
                ChangeRecorded(change_id=change.id, file_path=path, operation=change.operation.value)
            )
        return record

    def clear_session(self) -> None:
        """Drop all records ahead of a new query."""
        if self._records:
            LOGGER.debug("ToolUseRegistry.clear_session: dropping %d record(s)", len(self._records))
        self._records.clear()


__all__ = [
    "InvocationDisposition",
    "InvocationUpsert",
    "ToolUseRegistry",
]
