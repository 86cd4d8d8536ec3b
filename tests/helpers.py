"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable

from vaultscribe.chat.message_model import ToolStatus, ToolUseRecord
from vaultscribe.errors import SnapshotError
from vaultscribe.vault.snapshots import MemorySnapshotProvider


@dataclass(slots=True)
class RenderCall:
    """One instruction received by :class:`RecordingRenderSink`."""

    name: str
    handle: Any = None
    text: str | None = None
    record: ToolUseRecord | None = None
    status: ToolStatus | None = None


@dataclass(slots=True)
class RecordingRenderSink:
    """Render sink that records every instruction in order.

    Text handles are ``"text-N"``, tool handles ``"tool-N"``. Tool records are
    kept by reference with the status they had when rendered.
    """

    calls: list[RenderCall] = field(default_factory=list)
    texts: dict[str, str] = field(default_factory=dict)
    tools: dict[str, ToolUseRecord] = field(default_factory=dict)
    loading: bool = False
    _counter: int = 0

    def append_text_block(self, text: str) -> str:
        handle = self._next("text")
        self.texts[handle] = text
        self.calls.append(RenderCall("append_text_block", handle=handle, text=text))
        return handle

    def update_text_block(self, handle: str, text: str) -> None:
        self.texts[handle] = text
        self.calls.append(RenderCall("update_text_block", handle=handle, text=text))

    def append_tool_block(self, record: ToolUseRecord) -> str:
        handle = self._next("tool")
        self.tools[handle] = record
        self.calls.append(RenderCall("append_tool_block", handle=handle, record=record, status=record.status))
        return handle

    def replace_tool_block(self, handle: str, record: ToolUseRecord) -> str:
        self.tools[handle] = record
        self.calls.append(RenderCall("replace_tool_block", handle=handle, record=record, status=record.status))
        return handle

    def update_progress(self, handle: str, text: str) -> None:
        self.calls.append(RenderCall("update_progress", handle=handle, text=text))

    def append_status_block(self, kind: str, text: str) -> None:
        self.calls.append(RenderCall(f"status:{kind}", text=text))

    def set_loading(self, visible: bool) -> None:
        self.loading = visible
        self.calls.append(RenderCall("set_loading", text=str(visible)))

    def remove_loading(self) -> None:
        self.loading = False
        self.calls.append(RenderCall("remove_loading"))

    def scroll_to_end(self) -> None:
        return

    def named(self, *names: str) -> list[RenderCall]:
        return [call for call in self.calls if call.name in names]

    def names(self, *, ignore: Iterable[str] = ("set_loading", "remove_loading")) -> list[str]:
        skipped = set(ignore)
        return [call.name for call in self.calls if call.name not in skipped]

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"


class FlakySnapshotProvider(MemorySnapshotProvider):
    """Memory provider whose operations can be made to fail per path."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        super().__init__(files)
        self.failing_reads: set[str] = set()
        self.failing_writes: set[str] = set()
        self.failing_deletes: set[str] = set()
        self.reads: list[str] = []

    async def read(self, path: str) -> str | None:
        self.reads.append(path)
        if path in self.failing_reads:
            raise SnapshotError.for_operation("read", path, OSError("disk unavailable"))
        return await super().read(path)

    async def write(self, path: str, text: str) -> None:
        if path in self.failing_writes:
            raise SnapshotError.for_operation("write", path, OSError("read-only vault"))
        await super().write(path, text)

    async def delete(self, path: str) -> bool:
        if path in self.failing_deletes:
            raise SnapshotError.for_operation("delete", path, OSError("locked"))
        return await super().delete(path)


async def stream_of(*events: Any, before_each: Callable[[int], None] | None = None) -> AsyncIterator[Any]:
    """Yield ``events`` in order, calling ``before_each(index)`` before each."""

    for index, event in enumerate(events):
        if before_each is not None:
            before_each(index)
        yield event


async def failing_stream(*events: Any, error: BaseException) -> AsyncIterator[Any]:
    """Yield ``events`` and then raise ``error`` like a dying agent process."""

    for event in events:
        yield event
    raise error


def write_tool(tool_id: str, path: str, *, name: str = "Write") -> dict[str, Any]:
    return {"type": "tool_invocation", "id": tool_id, "name": name, "input": {"file_path": path}}


def text(chunk: str) -> dict[str, Any]:
    return {"type": "stream_text_delta", "text": chunk}
