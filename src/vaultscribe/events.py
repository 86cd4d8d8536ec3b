"""Event bus infrastructure for decoupled communication.

The chat controller and change reverter publish domain events here so the
host view (notices, status indicators, persistence) can react without the
core depending on it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]

NoticeLevel = Literal["info", "error"]


@dataclass(slots=True)
class Event:
    """Base class for all events in the system.

    Example::

        @dataclass(slots=True)
        class ChangeReverted(Event):
            change_id: str
            file_path: str
    """

    pass


# =============================================================================
# Query Events
# =============================================================================


@dataclass(slots=True)
class QueryStarted(Event):
    """Emitted when a user query begins streaming.

    Attributes:
        query_id: The unique identifier of the query.
        prompt: The user text that was relayed to the agent.
    """

    query_id: str
    prompt: str


@dataclass(slots=True)
class QueryCompleted(Event):
    """Emitted when the event stream of a query ends normally.

    Attributes:
        query_id: The unique identifier of the query.
        response_text: The full accumulated response text.
        session_id: The durable conversation handle, if the agent sent one.
        change_count: Number of file changes recorded during the query.
    """

    query_id: str
    response_text: str
    session_id: str | None = None
    change_count: int = 0


@dataclass(slots=True)
class QueryFailed(Event):
    """Emitted when a query terminates because of a transport/stream failure.

    Attributes:
        query_id: The unique identifier of the query.
        error: The raw error message.
    """

    query_id: str
    error: str


@dataclass(slots=True)
class QueryCancelled(Event):
    """Emitted when a query is stopped by the user.

    Attributes:
        query_id: The unique identifier of the query.
    """

    query_id: str


# =============================================================================
# Change Events
# =============================================================================


@dataclass(slots=True)
class ChangeRecorded(Event):
    """Emitted when a file-mutating tool produced a ledger entry.

    Attributes:
        change_id: The ledger id of the new entry.
        file_path: The vault-relative path that changed.
        operation: ``"create"`` or ``"modify"``.
    """

    change_id: str
    file_path: str
    operation: str


@dataclass(slots=True)
class ChangeReverted(Event):
    """Emitted after a change was successfully reverted on disk."""

    change_id: str
    file_path: str


@dataclass(slots=True)
class ChangeRestored(Event):
    """Emitted after a reverted change was successfully re-applied."""

    change_id: str
    file_path: str


# =============================================================================
# UI Events
# =============================================================================


@dataclass(slots=True)
class NoticePosted(Event):
    """Emitted when a notice should be shown to the user.

    Only transport failures and explicit revert/restore outcomes produce
    notices; other failures are logged only.

    Attributes:
        message: The notice text to display to the user.
        level: ``"info"`` or ``"error"``.
    """

    message: str
    level: NoticeLevel = "info"


# =============================================================================
# Event Bus
# =============================================================================


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus for decoupled communication.

    Handlers registered for a base class also receive its subclasses, so
    ``bus.subscribe(Event, handler)`` observes every domain event.

    Example::

        bus = EventBus()
        unsubscribe = bus.subscribe(NoticePosted, lambda event: print(event.message))
        bus.publish(NoticePosted(message="Reverted changes to notes.md"))
        unsubscribe()

    Thread Safety:
        This implementation is NOT thread-safe. All operations should be
        performed from the event loop thread that drives the chat.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` and its subclasses.

        Bound methods are held weakly so subscribers can be garbage collected
        without unsubscribing first. Returns a callable that unsubscribes.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove a previously registered handler (first occurrence only)."""
        handlers = self._handlers.get(event_type, [])
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                del handlers[index]
                logger.debug("Unsubscribed %s from %s", _handler_name(handler), event_type.__name__)
                return

    def publish(self, event: E) -> int:
        """Deliver ``event`` synchronously and return how many handlers ran.

        Handlers for the most specific type run first, in registration order.
        A handler that raises is logged and the remaining handlers still run.
        """
        event_name = type(event).__name__
        delivered = 0
        for event_type in type(event).__mro__:
            handlers = self._handlers.get(event_type)
            if not handlers:
                continue
            for handler in self._live_handlers(event_type):
                delivered += 1
                try:
                    handler(event)
                except Exception:
                    logger.exception("Handler %s raised for %s", _handler_name(handler), event_name)
            if event_type is Event:
                break
        logger.debug("Published %s to %d handler(s)", event_name, delivered)
        return delivered

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        """Return the number of registered handlers, optionally for one type."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())

    def _live_handlers(self, event_type: type[Event]) -> list[Handler[Any]]:
        live: list[Handler[Any]] = []
        kept: list[_HandlerRef] = []
        for handler_ref in self._handlers[event_type]:
            handler = handler_ref.resolve()
            if handler is not None:
                live.append(handler)
                kept.append(handler_ref)
        self._handlers[event_type] = kept
        return live


class _HandlerRef:
    """Resolves to the handler, or ``None`` once a weakly held owner is gone."""

    __slots__ = ("_resolve",)

    def __init__(self, resolve: Callable[[], Handler | None]) -> None:
        self._resolve = resolve

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler))
            except TypeError:
                pass
        return cls(lambda: handler)

    def resolve(self) -> Handler | None:
        return self._resolve()

    def matches(self, handler: Handler) -> bool:
        resolved = self._resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Any) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "NoticeLevel",
    "QueryStarted",
    "QueryCompleted",
    "QueryFailed",
    "QueryCancelled",
    "ChangeRecorded",
    "ChangeReverted",
    "ChangeRestored",
    "NoticePosted",
]
