"""Agent stream protocol: one closed event type per message kind.

Raw payloads arrive already deserialized from the agent process. Each kind
has a JSON schema; :func:`parse_event` validates a payload against it and
returns the matching dataclass, or raises :class:`MalformedEventError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping

from jsonschema import Draft7Validator, ValidationError

from ..errors import ErrorCode, MalformedEventError

__all__ = [
    "StreamEvent",
    "TextDelta",
    "ToolInvocation",
    "ToolProgress",
    "ToolResult",
    "SessionInit",
    "StreamError",
    "StreamEnd",
    "EVENT_SCHEMAS",
    "parse_event",
]


@dataclass(slots=True)
class StreamEvent:
    """Base class for protocol events."""

    type: ClassVar[str] = ""

    def to_payload(self) -> Dict[str, Any]:
        """Return the wire form of the event."""
        return {"type": self.type}


@dataclass(slots=True)
class TextDelta(StreamEvent):
    """A partial response text token."""

    type: ClassVar[str] = "stream_text_delta"

    text: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolInvocation(StreamEvent):
    """The full description of a tool call. ``id`` may be missing."""

    type: ClassVar[str] = "tool_invocation"

    id: str | None
    name: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(slots=True)
class ToolProgress(StreamEvent):
    """Heartbeat for a running tool; may precede its invocation event."""

    type: ClassVar[str] = "tool_progress"

    id: str
    name: str
    elapsed_seconds: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "elapsedSeconds": self.elapsed_seconds}


@dataclass(slots=True)
class ToolResult(StreamEvent):
    """Output of a tool call; ``content`` is a string or structured data."""

    type: ClassVar[str] = "tool_result"

    id: str
    content: Any = None

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "id": self.id, "content": self.content}


@dataclass(slots=True)
class SessionInit(StreamEvent):
    """Durable conversation handle announced by the agent."""

    type: ClassVar[str] = "session_init"

    session_id: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "sessionId": self.session_id}


@dataclass(slots=True)
class StreamError(StreamEvent):
    """The agent process reported a failure."""

    type: ClassVar[str] = "error"

    message: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


@dataclass(slots=True)
class StreamEnd(StreamEvent):
    """The agent finished the query."""

    type: ClassVar[str] = "end"


_ID_SCHEMA: Dict[str, Any] = {"type": "string", "minLength": 1}

EVENT_SCHEMAS: Dict[str, Dict[str, Any]] = {
    TextDelta.type: {
        "type": "object",
        "required": ["text"],
        "properties": {"text": {"type": "string"}},
    },
    ToolInvocation.type: {
        "type": "object",
        "required": ["name"],
        "properties": {
            "id": {"anyOf": [_ID_SCHEMA, {"type": "null"}]},
            "name": {"type": "string", "minLength": 1},
            "input": {"anyOf": [{"type": "object"}, {"type": "null"}]},
        },
    },
    ToolProgress.type: {
        "type": "object",
        "required": ["id", "name"],
        "properties": {
            "id": _ID_SCHEMA,
            "name": {"type": "string"},
            "elapsedSeconds": {"type": "number", "minimum": 0},
        },
    },
    ToolResult.type: {
        "type": "object",
        "required": ["id"],
        "properties": {
            "id": _ID_SCHEMA,
            "content": {"type": ["string", "object", "array", "number", "boolean", "null"]},
        },
    },
    SessionInit.type: {
        "type": "object",
        "required": ["sessionId"],
        "properties": {"sessionId": _ID_SCHEMA},
    },
    StreamError.type: {
        "type": "object",
        "required": ["message"],
        "properties": {"message": {"type": "string"}},
    },
    StreamEnd.type: {"type": "object"},
}

_VALIDATORS: Dict[str, Draft7Validator] = {
    event_type: Draft7Validator(schema) for event_type, schema in EVENT_SCHEMAS.items()
}
_KEY_ALIASES: Mapping[str, str] = {
    "elapsed_seconds": "elapsedSeconds",
    "session_id": "sessionId",
}


def parse_event(payload: StreamEvent | Mapping[str, Any]) -> StreamEvent:
    """Validate a raw protocol payload and return its typed event.

    Raises:
        MalformedEventError: For non-mapping payloads, unknown ``type`` tags,
            or payloads that fail the schema for their type.
    """

    if isinstance(payload, StreamEvent):
        return payload
    if not isinstance(payload, Mapping):
        raise MalformedEventError(message=f"Stream event must be a mapping, got {type(payload).__name__}")

    event_type = payload.get("type")
    validator = _VALIDATORS.get(event_type) if isinstance(event_type, str) else None
    if validator is None:
        raise MalformedEventError(
            error_code=ErrorCode.UNKNOWN_EVENT_TYPE,
            message=f"Unknown stream event type: {event_type!r}",
            event_type=str(event_type) if event_type is not None else None,
        )

    candidate = {_KEY_ALIASES.get(key, key): value for key, value in payload.items()}
    try:
        validator.validate(candidate)
    except ValidationError as error:
        raise MalformedEventError(
            message=f"Invalid {event_type} event: {_format_validation_error(error)}",
            event_type=event_type,
        ) from error

    return _build(event_type, candidate)


def _build(event_type: str, data: Mapping[str, Any]) -> StreamEvent:
    if event_type == TextDelta.type:
        return TextDelta(text=data["text"])
    if event_type == ToolInvocation.type:
        return ToolInvocation(id=data.get("id"), name=data["name"], input=dict(data.get("input") or {}))
    if event_type == ToolProgress.type:
        return ToolProgress(id=data["id"], name=data["name"], elapsed_seconds=float(data.get("elapsedSeconds") or 0.0))
    if event_type == ToolResult.type:
        return ToolResult(id=data["id"], content=data.get("content"))
    if event_type == SessionInit.type:
        return SessionInit(session_id=data["sessionId"])
    if event_type == StreamError.type:
        return StreamError(message=data["message"])
    return StreamEnd()


def _format_validation_error(error: ValidationError) -> str:
    path = ".".join(str(part) for part in error.path)
    if path:
        return f"{path}: {error.message}"
    return error.message
