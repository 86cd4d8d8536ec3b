"""Tests for the stream event logging helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tests.helpers import RecordingRenderSink, stream_of, text
from vaultscribe.chat.event_log import ChatEventLogger
from vaultscribe.chat.stream_reducer import StreamReducer


def _read_entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def test_chat_event_logger_writes_entries(tmp_path: Path) -> None:
    logger = ChatEventLogger(enabled=True, base_dir=tmp_path)
    run = logger.start_run(query_id="query-test", prompt="Summarize", session_id="s-1")

    with run:
        run.log_event({"type": "stream_text_delta", "text": "Hi"})
        run.log_event({"type": "bogus"}, skipped=True)
        run.log_completion(response_text="Hi", tool_call_count=0)

    log_files = list(tmp_path.glob("chat-*-querytest.jsonl"))
    assert len(log_files) == 1
    entries = _read_entries(log_files[0])
    assert entries[0]["event"] == "start"
    assert entries[0]["session_id"] == "s-1"
    assert [entry["event"] for entry in entries[1:3]] == ["event", "event"]
    assert entries[2]["skipped"] is True
    assert entries[-1]["event"] == "completion"
    assert entries[-1]["status"] == "success"


def test_chat_event_logger_disabled_is_noop(tmp_path: Path) -> None:
    logger = ChatEventLogger(enabled=False, base_dir=tmp_path)
    run = logger.start_run(query_id="no-log", prompt="noop")

    with run:
        run.log_event({"type": "end"})
        run.log_completion(response_text="", tool_call_count=0)

    assert run.path is None
    assert list(tmp_path.glob("*.jsonl")) == []


def test_chat_event_log_records_failure_on_exception(tmp_path: Path) -> None:
    logger = ChatEventLogger(enabled=True, base_dir=tmp_path)
    run = logger.start_run(query_id="boom", prompt="fail")

    with pytest.raises(RuntimeError):
        with run:
            raise RuntimeError("exploded")

    entries = _read_entries(run.path)
    assert entries[-1]["event"] == "failure"
    assert entries[-1]["message"] == "exploded"


def test_finalized_run_ignores_further_entries(tmp_path: Path) -> None:
    run = ChatEventLogger(enabled=True, base_dir=tmp_path).start_run(query_id="q", prompt="p")
    run.log_cancelled(response_text="partial")
    run.log_event({"type": "end"})
    run.log_failure(message="late")

    entries = _read_entries(run.path)
    assert [entry["event"] for entry in entries] == ["start", "cancelled"]


@pytest.mark.asyncio
async def test_reducer_logs_consumed_events(tmp_path: Path, registry) -> None:
    run = ChatEventLogger(enabled=True, base_dir=tmp_path).start_run(query_id="reduce", prompt="p")
    reducer = StreamReducer(registry, RecordingRenderSink(), debounce_seconds=0, event_log_run=run)

    await reducer.run(stream_of(text("a"), {"type": "nope"}, {"type": "end"}))

    entries = _read_entries(run.path)
    assert [entry["event"] for entry in entries] == ["start", "event", "event", "event", "completion"]
    assert entries[2]["skipped"] is True
    assert entries[-1]["response_text"] == "a"
