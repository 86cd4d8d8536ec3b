"""Debug event logging for agent stream queries."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping

from ..utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)


def _default_event_dir() -> Path:
    log_path = logging_utils.get_log_path()
    if log_path is not None:
        return log_path.parent / "events"
    return logging_utils.log_directory() / "events"


@dataclass(slots=True)
class _NullChatEventLogRun:
    """No-op implementation used when event logging is disabled."""

    path: Path | None = None

    def __enter__(self) -> "_NullChatEventLogRun":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        return False

    def log_event(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_cancelled(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return


class ChatEventLogRun:
    """Context manager that writes one JSONL entry per consumed stream event."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self._finalized = False
        self._event_count = 0
        self._write_entry("start", context)

    def __enter__(self) -> "ChatEventLogRun":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        if exc is not None and not self._finalized:
            self.log_failure(message=str(exc) or type(exc).__name__)
        elif not self._finalized:
            self.log_failure(message="run aborted without completion")
        return False

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def event_count(self) -> int:
        return self._event_count

    def close(self) -> None:
        try:
            self._file.close()
        except OSError:  # pragma: no cover
            LOGGER.debug("Failed to close event log %s", self.path, exc_info=True)

    def log_event(self, payload: Any, *, skipped: bool = False) -> None:
        if self._finalized:
            return
        self._event_count += 1
        entry: dict[str, Any] = {"index": self._event_count, "payload": payload}
        if skipped:
            entry["skipped"] = True
        self._write_entry("event", entry)

    def log_completion(
        self,
        *,
        response_text: str,
        tool_call_count: int,
        change_count: int = 0,
        session_id: str | None = None,
    ) -> None:
        if self._finalized:
            return
        payload = {
            "response_text": response_text,
            "tool_call_count": tool_call_count,
            "change_count": change_count,
            "session_id": session_id,
            "status": "success",
        }
        self._finalize("completion", payload)

    def log_cancelled(self, *, response_text: str = "") -> None:
        if self._finalized:
            return
        self._finalize("cancelled", {"status": "cancelled", "response_text": response_text})

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            return
        payload: dict[str, Any] = {
            "status": "failure",
            "message": message,
        }
        if details:
            payload["details"] = dict(details)
        self._finalize("failure", payload)

    def _finalize(self, event: str, payload: Mapping[str, Any]) -> None:
        self._write_entry(event, payload)
        self._finalized = True
        self.close()

    def _write_entry(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        entry = {"event": event, "timestamp": time.time()}
        entry.update((key, _jsonable(value)) for key, value in (payload or {}).items())
        try:
            self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self._file.flush()
        except (OSError, ValueError):
            LOGGER.debug("Failed to write event log entry to %s", self.path, exc_info=True)


def _jsonable(value: Any, depth: int = 0) -> Any:
    """Coerce stream payloads (raw mappings or event objects) into JSON values."""

    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if depth >= 6:
        return repr(value)
    to_payload = getattr(value, "to_payload", None)
    if callable(to_payload):
        value = to_payload()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item, depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item, depth + 1) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return repr(value)


EventLogRun = ChatEventLogRun | _NullChatEventLogRun


class ChatEventLogger:
    """Factory for per-query event logs when debug event logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _default_event_dir()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def start_run(
        self,
        *,
        query_id: str,
        prompt: str,
        session_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> EventLogRun:
        if not self.enabled:
            return _NullChatEventLogRun()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(query_id)
            context = {
                "query_id": query_id,
                "prompt": prompt,
                "session_id": session_id,
                "metadata": dict(metadata or {}),
            }
            log_run = ChatEventLogRun(path, context=context)
            LOGGER.debug("Stream event log started: %s", path)
            return log_run
        except OSError:
            LOGGER.debug("Failed to start stream event log", exc_info=True)
            return _NullChatEventLogRun()

    def _allocate_path(self, query_id: str) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        safe_query_id = "".join(ch for ch in query_id if ch.isalnum())[:12] or "query"
        return self._base_dir / f"chat-{timestamp}-{safe_query_id}.jsonl"


__all__ = [
    "ChatEventLogger",
    "ChatEventLogRun",
    "EventLogRun",
]
