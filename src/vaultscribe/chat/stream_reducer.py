"""Fold an agent event stream into render instructions and tool/change state.

One :class:`StreamReducer` drives one :class:`StreamSession`. Events are
reduced strictly in arrival order; text renders are debounced but any pending
text render is flushed before a non-text event is handled, so instructions
reach the :class:`~vaultscribe.chat.render.RenderSink` in event order.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Callable, List, Mapping, Optional

from ..errors import MalformedEventError
from .event_log import EventLogRun, _NullChatEventLogRun
from .message_model import ToolStatus, ToolUseRecord
from .protocol import (
    SessionInit,
    StreamEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolInvocation,
    ToolProgress,
    ToolResult,
    parse_event,
)
from .render import RenderSink, format_progress
from .render_buffer import DebouncedRender
from .tool_registry import ToolUseRegistry

LOGGER = logging.getLogger(__name__)

STOPPED_TEXT = "*Stopped by user*"

_synthetic_ids = itertools.count(1)


class CancellationToken:
    """Cooperative cancellation flag shared by a controller, reducer and producer.

    Producers that can abort work early (for example by terminating the agent
    process) register a callback with :meth:`add_callback`.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by user") -> bool:
        """Engage the token; returns ``False`` if it was already engaged."""

        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover
                LOGGER.exception("Cancellation callback %r failed", callback)
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED)


@dataclass(slots=True)
class StreamSession:
    """Per-query reduction state. Discarded once the query finishes."""

    query_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    session_id: Optional[str] = None
    response_text: str = ""
    segment_text: str = ""
    segment_handle: Any = None
    tool_ids: List[str] = field(default_factory=list)
    change_ids: List[str] = field(default_factory=list)
    token: CancellationToken = field(default_factory=CancellationToken)
    state: SessionState = SessionState.IDLE
    error: Optional[str] = None
    loading_visible: bool = False

    @property
    def cancelled(self) -> bool:
        return self.state is SessionState.CANCELLED

    def track_tool(self, tool_id: str) -> None:
        if tool_id not in self.tool_ids:
            self.tool_ids.append(tool_id)


class StreamReducer:
    """State machine reducing protocol events for a single stream session."""

    def __init__(
        self,
        registry: ToolUseRegistry,
        sink: RenderSink,
        *,
        debounce_seconds: float = 0.15,
        event_log_run: EventLogRun | None = None,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._debounce_seconds = debounce_seconds
        self._event_log = event_log_run or _NullChatEventLogRun()
        self._session: StreamSession | None = None
        self._buffer: DebouncedRender | None = None

    @property
    def session(self) -> StreamSession | None:
        return self._session

    @property
    def render_buffer(self) -> DebouncedRender | None:
        return self._buffer

    async def run(
        self,
        events: AsyncIterable[StreamEvent | Mapping[str, Any]],
        session: StreamSession | None = None,
    ) -> StreamSession:
        """Consume ``events`` until a terminal state and return the session.

        Exceptions raised by the stream are transport failures and end the
        session as failed (or cancelled, when the token was engaged first).
        ``asyncio.CancelledError`` finalizes the session as cancelled and is
        re-raised.
        """

        session = session or StreamSession()
        if session.state is not SessionState.IDLE:
            raise RuntimeError(f"Stream session {session.query_id} was already consumed")
        self._session = session
        self._buffer = DebouncedRender(self._render_segment, self._debounce_seconds)
        session.state = SessionState.STREAMING
        self._set_loading(True)

        iterator: AsyncIterator[Any] = aiter(events)
        try:
            while session.state is SessionState.STREAMING:
                if session.token.cancelled:
                    self._finish_cancelled()
                    break
                try:
                    raw = await anext(iterator)
                except StopAsyncIteration:
                    LOGGER.debug("Stream %s ended without an end event", session.query_id)
                    if session.token.cancelled:
                        self._finish_cancelled()
                    else:
                        self._finish_completed()
                    break
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    LOGGER.warning("Stream %s failed: %s", session.query_id, exc)
                    self._finish_error(str(exc) or type(exc).__name__)
                    break

                if session.token.cancelled:
                    LOGGER.debug("Dropping event received after cancellation: %r", raw)
                    self._finish_cancelled()
                    break
                await self._consume(raw)
        except asyncio.CancelledError:
            session.token.cancel("task cancelled")
            if not session.state.is_terminal:
                self._finish_cancelled()
            raise
        except Exception as exc:
            if not session.state.is_terminal:
                session.state = SessionState.FAILED
                session.error = str(exc) or type(exc).__name__
                self._event_log.log_failure(message=session.error)
            raise
        finally:
            await self._close_iterator(iterator)
        return session

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    async def _consume(self, raw: StreamEvent | Mapping[str, Any]) -> None:
        try:
            event = parse_event(raw)
        except MalformedEventError as exc:
            LOGGER.warning("Skipping malformed stream event: %s", exc)
            self._event_log.log_event(raw, skipped=True)
            return
        self._event_log.log_event(raw)

        if isinstance(event, TextDelta):
            self._on_text(event)
            return
        # Non-text events never overtake a pending text render.
        self._flush_text()
        if isinstance(event, ToolInvocation):
            await self._on_invocation(event)
        elif isinstance(event, ToolProgress):
            self._on_progress(event)
        elif isinstance(event, ToolResult):
            await self._on_result(event)
        elif isinstance(event, SessionInit):
            self._on_session_init(event)
        elif isinstance(event, StreamError):
            self._finish_error(event.message)
        elif isinstance(event, StreamEnd):
            self._finish_completed()

    def _on_text(self, event: TextDelta) -> None:
        session = self._require_session()
        if not event.text:
            return
        session.response_text += event.text
        session.segment_text += event.text
        self._set_loading(False)
        self._require_buffer().schedule(session.segment_text)

    async def _on_invocation(self, event: ToolInvocation) -> None:
        session = self._require_session()
        self._close_segment()
        tool_id = event.id or _synthesize_tool_id()
        upsert = self._registry.upsert_invocation(tool_id, event.name, event.input)
        record = upsert.record
        session.track_tool(tool_id)
        await self._registry.capture_before_state(tool_id)

        if upsert.needs_new_block or record.render_handle is None:
            record.render_handle = self._sink.append_tool_block(record)
        else:
            record.render_handle = self._sink.replace_tool_block(record.render_handle, record)
        self._set_loading(True)
        self._sink.scroll_to_end()

    def _on_progress(self, event: ToolProgress) -> None:
        session = self._require_session()
        record = self._registry.get(event.id)
        progress = format_progress(event.name or (record.name if record else ""), event.elapsed_seconds)
        if record is not None and record.render_handle is not None:
            if record.has_result:
                LOGGER.debug("Ignoring progress for finished tool %s", event.id)
                return
            self._sink.update_progress(record.render_handle, progress)
            return

        self._close_segment()
        record = self._registry.begin_or_get_placeholder(event.id, event.name)
        session.track_tool(event.id)
        record.render_handle = self._sink.append_tool_block(record)
        self._sink.update_progress(record.render_handle, progress)
        self._sink.scroll_to_end()

    async def _on_result(self, event: ToolResult) -> None:
        session = self._require_session()
        record = await self._registry.apply_result(event.id, event.content)
        if record is None:
            return
        if record.linked_change is not None and record.linked_change.id not in session.change_ids:
            session.change_ids.append(record.linked_change.id)
        self._render_tool(record)
        self._sink.scroll_to_end()

    def _on_session_init(self, event: SessionInit) -> None:
        session = self._require_session()
        if session.session_id is not None:
            LOGGER.debug("Ignoring repeated session init %s (have %s)", event.session_id, session.session_id)
            return
        session.session_id = event.session_id
        LOGGER.debug("Stream %s bound to agent session %s", session.query_id, event.session_id)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish_completed(self) -> None:
        session = self._require_session()
        self._flush_text()
        self._remove_loading()
        session.state = SessionState.COMPLETED
        self._event_log.log_completion(
            response_text=session.response_text,
            tool_call_count=len(session.tool_ids),
            change_count=len(session.change_ids),
            session_id=session.session_id,
        )
        LOGGER.debug(
            "Stream %s completed: %d chars, %d tool(s), %d change(s)",
            session.query_id,
            len(session.response_text),
            len(session.tool_ids),
            len(session.change_ids),
        )

    def _finish_cancelled(self) -> None:
        session = self._require_session()
        self._flush_text()
        self._remove_loading()
        self._interrupt_pending_tools()
        self._sink.append_status_block("stopped", STOPPED_TEXT)
        self._sink.scroll_to_end()
        session.state = SessionState.CANCELLED
        self._event_log.log_cancelled(response_text=session.response_text)
        LOGGER.info("Stream %s stopped by user", session.query_id)

    def _finish_error(self, message: str) -> None:
        session = self._require_session()
        if session.token.cancelled:
            self._finish_cancelled()
            return
        self._flush_text()
        self._remove_loading()
        self._interrupt_pending_tools()
        self._sink.append_status_block("error", f"Error: {message}")
        self._sink.scroll_to_end()
        session.state = SessionState.FAILED
        session.error = message
        self._event_log.log_failure(message=message)
        LOGGER.warning("Stream %s failed: %s", session.query_id, message)

    def _interrupt_pending_tools(self) -> None:
        session = self._require_session()
        for tool_id in session.tool_ids:
            record = self._registry.get(tool_id)
            if record is None or record.has_result or record.status is ToolStatus.INTERRUPTED:
                continue
            record.status = ToolStatus.INTERRUPTED
            self._render_tool(record)

    # ------------------------------------------------------------------
    # Rendering helpers
    # ------------------------------------------------------------------

    def _render_segment(self, text: str) -> None:
        session = self._require_session()
        if session.segment_handle is None:
            session.segment_handle = self._sink.append_text_block(text)
        else:
            self._sink.update_text_block(session.segment_handle, text)
        self._sink.scroll_to_end()

    def _render_tool(self, record: ToolUseRecord) -> None:
        if record.render_handle is None:
            record.render_handle = self._sink.append_tool_block(record)
        else:
            record.render_handle = self._sink.replace_tool_block(record.render_handle, record)

    def _flush_text(self) -> None:
        if self._buffer is not None:
            self._buffer.flush()

    def _close_segment(self) -> None:
        session = self._require_session()
        self._flush_text()
        session.segment_text = ""
        session.segment_handle = None

    def _set_loading(self, visible: bool) -> None:
        session = self._require_session()
        if session.loading_visible is visible:
            return
        session.loading_visible = visible
        self._sink.set_loading(visible)

    def _remove_loading(self) -> None:
        session = self._require_session()
        session.loading_visible = False
        self._sink.remove_loading()

    def _require_session(self) -> StreamSession:
        if self._session is None:
            raise RuntimeError("StreamReducer has no active session")
        return self._session

    def _require_buffer(self) -> DebouncedRender:
        if self._buffer is None:
            raise RuntimeError("StreamReducer has no render buffer; call run() first")
        return self._buffer

    async def _close_iterator(self, iterator: AsyncIterator[Any]) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            LOGGER.debug("Failed to close event stream", exc_info=True)


def _synthesize_tool_id() -> str:
    return f"tool_{time.time_ns()}_{next(_synthetic_ids)}"


__all__ = [
    "STOPPED_TEXT",
    "CancellationToken",
    "SessionState",
    "StreamSession",
    "StreamReducer",
]
