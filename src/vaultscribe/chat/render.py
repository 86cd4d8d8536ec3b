"""Render instruction contract between the reducer and a view."""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

from .message_model import ToolUseRecord

StatusKind = Literal["stopped", "error"]


@runtime_checkable
class RenderSink(Protocol):
    """Receives render instructions in the order the reducer emits them.

    Handles are opaque: the reducer stores them and passes them back, never
    inspects them.
    """

    def append_text_block(self, text: str) -> Any:
        """Open a new text block and return its handle."""
        ...

    def update_text_block(self, handle: Any, text: str) -> None:
        """Re-render a text block with the full segment text."""
        ...

    def append_tool_block(self, record: ToolUseRecord) -> Any:
        """Append a block for ``record`` and return its handle."""
        ...

    def replace_tool_block(self, handle: Any, record: ToolUseRecord) -> Any:
        """Swap the block at ``handle`` for a fresh rendering of ``record``."""
        ...

    def update_progress(self, handle: Any, text: str) -> None:
        """Update the progress indicator of a tool block in place."""
        ...

    def append_status_block(self, kind: StatusKind, text: str) -> None:
        """Append a terminal stopped/error block."""
        ...

    def set_loading(self, visible: bool) -> None:
        ...

    def remove_loading(self) -> None:
        ...

    def scroll_to_end(self) -> None:
        ...


def format_progress(name: str, elapsed_seconds: float) -> str:
    """Progress indicator text for a running tool."""
    return f"{name} running… {elapsed_seconds:.1f}s"


__all__ = ["RenderSink", "StatusKind", "format_progress"]
