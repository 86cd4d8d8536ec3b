"""Per-chat controller: query lifecycle, transcript and change actions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, AsyncIterable, AsyncIterator, Callable, Mapping, Optional

from ..changes.ledger import ChangeLedger
from ..changes.reverter import ChangeActionResult, ChangeReverter
from ..errors import ChangeNotFoundError
from ..events import (
    EventBus,
    NoticePosted,
    QueryCancelled,
    QueryCompleted,
    QueryFailed,
    QueryStarted,
)
from ..services.settings import Settings
from ..vault.snapshots import SnapshotProvider
from .event_log import ChatEventLogger
from .message_model import ChatMessage, ToolUseRecord
from .presentation import ToolBlockView, describe_tool_block
from .protocol import StreamEvent
from .render import RenderSink
from .stream_reducer import STOPPED_TEXT, CancellationToken, SessionState, StreamReducer, StreamSession
from .tool_registry import ToolUseRegistry

LOGGER = logging.getLogger(__name__)

StreamFactory = Callable[
    [str, Optional[str], CancellationToken],
    AsyncIterable[StreamEvent | Mapping[str, Any]],
]


class ChatController:
    """Owns the ledger and tool registry of one chat and runs its queries.

    ``stream_factory(prompt, session_id, token)`` returns the agent event
    stream for a query. ``session_id`` is the conversation handle from an
    earlier query, or ``None`` to start a new conversation.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        provider: SnapshotProvider,
        sink: RenderSink,
        stream_factory: StreamFactory,
        event_bus: EventBus | None = None,
        event_logger: ChatEventLogger | None = None,
    ) -> None:
        self._settings = settings
        self._provider = provider
        self._sink = sink
        self._stream_factory = stream_factory
        self._bus = event_bus or EventBus()
        self._event_logger = event_logger or ChatEventLogger(
            enabled=settings.debug_event_logging,
            base_dir=Path(settings.log_dir) / "events" if settings.log_dir else None,
        )
        self._transcript: list[ChatMessage] = []
        self._session_id: str | None = None
        self._active: StreamSession | None = None
        self._last_session: StreamSession | None = None
        self._build_state()

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------
    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def ledger(self) -> ChangeLedger:
        return self._ledger

    @property
    def registry(self) -> ToolUseRegistry:
        return self._registry

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def transcript(self) -> tuple[ChatMessage, ...]:
        return tuple(self._transcript)

    @property
    def active_session(self) -> StreamSession | None:
        return self._active

    @property
    def last_session(self) -> StreamSession | None:
        return self._last_session

    @property
    def is_busy(self) -> bool:
        return self._active is not None

    # ------------------------------------------------------------------
    # Query lifecycle
    # ------------------------------------------------------------------
    async def send_query(self, prompt: str) -> StreamSession:
        """Relay ``prompt`` and reduce the agent's event stream.

        Raises:
            RuntimeError: If a query is already in progress.
            ValueError: If ``prompt`` is blank.
        """

        if self._active is not None:
            raise RuntimeError("A query is already in progress")
        text = (prompt or "").strip()
        if not text:
            raise ValueError("Prompt must not be empty")

        self._registry.clear_session()
        session = StreamSession()
        self._active = session
        self._transcript.append(ChatMessage("user", text))
        self._bus.publish(QueryStarted(query_id=session.query_id, prompt=text))
        LOGGER.debug("Query %s started (resume=%s)", session.query_id, self._session_id)

        log_run = self._event_logger.start_run(
            query_id=session.query_id,
            prompt=text,
            session_id=self._session_id,
        )
        reducer = StreamReducer(
            self._registry,
            self._sink,
            debounce_seconds=self._settings.debounce_seconds,
            event_log_run=log_run,
        )
        try:
            with log_run:
                await reducer.run(self._open_stream(text, session.token), session)
        finally:
            self._active = None
            self._last_session = session
            self._remember_changes()
            self._finalize(session)
        return session

    def cancel(self) -> bool:
        """Stop the running query; returns ``False`` when nothing is running."""

        session = self._active
        if session is None:
            return False
        engaged = session.token.cancel()
        if engaged:
            LOGGER.info("Cancelling query %s", session.query_id)
        return engaged

    def clear_chat(self) -> None:
        """Forget the transcript, conversation handle and recorded changes."""

        if self._active is not None:
            raise RuntimeError("Cannot clear the chat while a query is in progress")
        self._transcript.clear()
        self._session_id = None
        self._last_session = None
        self._build_state()
        LOGGER.debug("Chat cleared, session reset")

    # ------------------------------------------------------------------
    # Change actions
    # ------------------------------------------------------------------
    async def revert_change(self, change_id: str) -> ChangeActionResult | None:
        return await self._run_change_action(change_id, self._reverter.revert)

    async def restore_change(self, change_id: str) -> ChangeActionResult | None:
        return await self._run_change_action(change_id, self._reverter.restore)

    async def toggle_change(self, change_id: str) -> ChangeActionResult | None:
        return await self._run_change_action(change_id, self._reverter.toggle)

    def describe(self, record: ToolUseRecord) -> ToolBlockView:
        return describe_tool_block(record, max_diff_lines=self._settings.diff_preview_max_lines)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _build_state(self) -> None:
        self._ledger = ChangeLedger()
        self._registry = ToolUseRegistry(
            self._ledger,
            self._provider,
            self._settings.mutation_tool_set,
            event_bus=self._bus,
        )
        self._reverter = ChangeReverter(self._ledger, self._provider, self._bus)
        # change id -> tool block, kept across queries until the chat is cleared
        self._change_records: dict[str, ToolUseRecord] = {}

    def _remember_changes(self) -> None:
        for record in self._registry:
            if record.linked_change is not None:
                self._change_records[record.linked_change.id] = record

    async def _open_stream(self, prompt: str, token: CancellationToken) -> AsyncIterator[Any]:
        iterator = aiter(self._stream_factory(prompt, self._session_id, token))
        try:
            async for event in iterator:
                yield event
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run_change_action(
        self,
        change_id: str,
        action: Callable[[str], Any],
    ) -> ChangeActionResult | None:
        try:
            result: ChangeActionResult = await action(change_id)
        except ChangeNotFoundError as exc:
            LOGGER.warning("Change action failed: %s", exc)
            self._bus.publish(NoticePosted(message=exc.message, level="error"))
            return None
        if result.ok and not result.noop:
            record = self._registry.find_by_change(change_id) or self._change_records.get(change_id)
            if record is not None and record.render_handle is not None:
                record.render_handle = self._sink.replace_tool_block(record.render_handle, record)
        return result

    def _finalize(self, session: StreamSession) -> None:
        if session.session_id and self._session_id is None:
            self._session_id = session.session_id
            LOGGER.debug("Conversation bound to agent session %s", session.session_id)

        if session.state is SessionState.COMPLETED:
            self._transcript.append(ChatMessage("assistant", session.response_text))
            self._bus.publish(
                QueryCompleted(
                    query_id=session.query_id,
                    response_text=session.response_text,
                    session_id=self._session_id,
                    change_count=len(session.change_ids),
                )
            )
        elif session.state is SessionState.CANCELLED:
            self._transcript.append(ChatMessage("assistant", STOPPED_TEXT))
            self._bus.publish(QueryCancelled(query_id=session.query_id))
        else:
            message = session.error or "stream ended unexpectedly"
            error_text = f"Error: {message}"
            self._transcript.append(ChatMessage("assistant", error_text))
            self._bus.publish(QueryFailed(query_id=session.query_id, error=message))
            self._bus.publish(NoticePosted(message=error_text, level="error"))


__all__ = ["ChatController", "StreamFactory"]
