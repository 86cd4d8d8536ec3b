"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from tests.helpers import FlakySnapshotProvider, RecordingRenderSink
from vaultscribe.changes.ledger import ChangeLedger
from vaultscribe.chat.tool_registry import ToolUseRegistry
from vaultscribe.events import EventBus
from vaultscribe.services.settings import Settings


class _FakeClock:
    """Deterministic nanosecond clock for ledger ids."""

    def __init__(self, start: int = 1_700_000_000_000_000_000) -> None:
        self.value = start

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def fake_clock() -> _FakeClock:
    return _FakeClock()


@pytest.fixture
def ledger(fake_clock: _FakeClock) -> ChangeLedger:
    return ChangeLedger(clock=fake_clock)


@pytest.fixture
def provider() -> FlakySnapshotProvider:
    return FlakySnapshotProvider()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def registry(ledger: ChangeLedger, provider: FlakySnapshotProvider, event_bus: EventBus) -> ToolUseRegistry:
    return ToolUseRegistry(ledger, provider, ("Write", "Edit"), event_bus=event_bus)


@pytest.fixture
def sink() -> RecordingRenderSink:
    return RecordingRenderSink()


@pytest.fixture
def settings() -> Settings:
    return Settings(render_debounce_ms=0)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "VAULTSCRIBE_VAULT_PATH",
        "VAULTSCRIBE_LOG_DIR",
        "VAULTSCRIBE_DEBUG_LOGGING",
        "VAULTSCRIBE_DEBUG_EVENT_LOGGING",
        "VAULTSCRIBE_RENDER_DEBOUNCE_MS",
        "VAULTSCRIBE_DIFF_PREVIEW_MAX_LINES",
    ):
        monkeypatch.delenv(name, raising=False)
