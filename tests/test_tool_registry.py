"""Tests for :mod:`vaultscribe.chat.tool_registry`."""

from __future__ import annotations

import pytest

from vaultscribe.changes.models import ChangeOperation
from vaultscribe.chat.message_model import NO_RESULT, NOT_APPLICABLE, NOT_CAPTURED, ToolStatus
from vaultscribe.chat.tool_registry import InvocationDisposition, ToolUseRegistry
from vaultscribe.events import ChangeRecorded


class TestPlaceholderMerging:
    """Progress-first records and their later invocation."""

    def test_placeholder_then_invocation_keeps_identity(self, registry: ToolUseRegistry) -> None:
        placeholder = registry.begin_or_get_placeholder("1", "Write")
        assert placeholder.is_placeholder and placeholder.status is ToolStatus.PLACEHOLDER
        assert placeholder.input == {} and placeholder.result is NO_RESULT

        upsert = registry.upsert_invocation("1", "Write", {"file_path": "x.md"})

        assert upsert.record is placeholder
        assert upsert.was_placeholder is True
        assert upsert.disposition is InvocationDisposition.FILLED_PLACEHOLDER
        assert placeholder.input == {"file_path": "x.md"}
        assert placeholder.status is ToolStatus.RUNNING
        assert len(registry) == 1

    def test_begin_returns_existing_record_unchanged(self, registry: ToolUseRegistry) -> None:
        record = registry.upsert_invocation("1", "Read", {"file_path": "a.md"}).record
        assert registry.begin_or_get_placeholder("1", "Other") is record
        assert record.name == "Read"

    def test_second_upsert_same_identity(self, registry: ToolUseRegistry) -> None:
        """Two invocations for one id never create two records."""
        first = registry.upsert_invocation("1", "Write", {"file_path": "a.md"})
        second = registry.upsert_invocation("1", "Edit", {"file_path": "b.md"})

        assert first.was_placeholder is False
        assert second.was_placeholder is False
        assert second.record is first.record
        assert second.disposition is InvocationDisposition.UPDATED
        assert second.record.name == "Edit"
        assert second.record.input == {"file_path": "b.md"}

    @pytest.mark.asyncio
    async def test_invocation_after_result_resets_record(self, registry: ToolUseRegistry) -> None:
        record = registry.upsert_invocation("1", "Read", {"file_path": "a.md"}).record
        await registry.apply_result("1", "done")

        again = registry.upsert_invocation("1", "Read", {"file_path": "b.md"})

        assert again.record is record
        assert again.disposition is InvocationDisposition.RESET
        assert again.needs_new_block
        assert record.result is NO_RESULT
        assert record.status is ToolStatus.RUNNING


class TestBeforeState:
    """Before-state capture."""

    @pytest.mark.asyncio
    async def test_captures_existing_content(self, registry, provider) -> None:
        provider.files["x.md"] = "before\n"
        registry.upsert_invocation("1", "Write", {"file_path": "x.md"})
        assert await registry.capture_before_state("1") == "before\n"

    @pytest.mark.asyncio
    async def test_absent_file_is_none_not_unset(self, registry) -> None:
        record = registry.upsert_invocation("1", "Write", {"file_path": "new.md"}).record
        await registry.capture_before_state("1")
        assert record.file_state_before is None
        assert record.before_captured

    @pytest.mark.asyncio
    async def test_captured_exactly_once(self, registry, provider) -> None:
        provider.files["x.md"] = "v1"
        registry.upsert_invocation("1", "Edit", {"file_path": "x.md"})
        await registry.capture_before_state("1")
        provider.files["x.md"] = "v2"
        registry.upsert_invocation("1", "Edit", {"file_path": "x.md"})
        await registry.capture_before_state("1")

        assert registry.get("1").file_state_before == "v1"
        assert provider.reads == ["x.md"]

    @pytest.mark.asyncio
    async def test_non_mutation_tool_is_not_applicable(self, registry, provider) -> None:
        registry.upsert_invocation("1", "Read", {"file_path": "x.md"})
        assert await registry.capture_before_state("1") is NOT_APPLICABLE
        assert provider.reads == []

    @pytest.mark.asyncio
    async def test_read_failure_leaves_field_unset(self, registry, provider) -> None:
        provider.failing_reads.add("x.md")
        record = registry.upsert_invocation("1", "Write", {"file_path": "x.md"}).record
        assert await registry.capture_before_state("1") is NOT_CAPTURED
        assert record.file_state_before is NOT_CAPTURED

    @pytest.mark.asyncio
    async def test_accepts_camel_case_path(self, registry, provider) -> None:
        provider.files["y.md"] = "y"
        registry.upsert_invocation("1", "Write", {"filePath": "y.md"})
        assert await registry.capture_before_state("1") == "y"


class TestApplyResult:
    """Result handling and change recording."""

    @pytest.mark.asyncio
    async def test_records_create(self, registry, provider, event_bus) -> None:
        recorded: list[ChangeRecorded] = []
        event_bus.subscribe(ChangeRecorded, recorded.append)
        registry.upsert_invocation("1", "Write", {"file_path": "Notes/b.md"})
        await registry.capture_before_state("1")
        provider.files["Notes/b.md"] = "hello\n"

        record = await registry.apply_result("1", "ok")

        assert record is not None and record.result == "ok"
        assert record.status is ToolStatus.COMPLETE
        change = record.linked_change
        assert change is not None and change.operation is ChangeOperation.CREATE
        assert change.new_content == "hello\n"
        assert registry.ledger.get(change.id) is change
        assert [event.change_id for event in recorded] == [change.id]

    @pytest.mark.asyncio
    async def test_unchanged_file_records_nothing(self, registry, provider) -> None:
        provider.files["x.md"] = "same"
        registry.upsert_invocation("1", "Edit", {"file_path": "x.md"})
        await registry.capture_before_state("1")

        record = await registry.apply_result("1", "no-op")

        assert record.linked_change is None
        assert len(registry.ledger) == 0

    @pytest.mark.asyncio
    async def test_without_before_state_records_nothing(self, registry, provider) -> None:
        registry.upsert_invocation("1", "Write", {"file_path": "x.md"})
        provider.files["x.md"] = "after"
        record = await registry.apply_result("1", "ok")
        assert record.linked_change is None

    @pytest.mark.asyncio
    async def test_after_read_failure_is_logged_not_raised(self, registry, provider) -> None:
        registry.upsert_invocation("1", "Write", {"file_path": "x.md"})
        await registry.capture_before_state("1")
        provider.failing_reads.add("x.md")

        record = await registry.apply_result("1", "ok")

        assert record.result == "ok"
        assert record.linked_change is None

    @pytest.mark.asyncio
    async def test_unknown_id_returns_none(self, registry) -> None:
        assert await registry.apply_result("ghost", "ok") is None

    @pytest.mark.asyncio
    async def test_none_is_a_real_result(self, registry) -> None:
        registry.upsert_invocation("1", "Read", {})
        record = await registry.apply_result("1", None)
        assert record.has_result and record.result is None

    @pytest.mark.asyncio
    async def test_find_by_change_and_pending(self, registry, provider) -> None:
        registry.upsert_invocation("1", "Write", {"file_path": "a.md"})
        registry.upsert_invocation("2", "Read", {"file_path": "a.md"})
        await registry.capture_before_state("1")
        provider.files["a.md"] = "a"
        record = await registry.apply_result("1", "ok")

        assert registry.find_by_change(record.linked_change.id) is record
        assert [pending.id for pending in registry.pending()] == ["2"]


def test_clear_session_drops_records(registry: ToolUseRegistry) -> None:
    registry.upsert_invocation("1", "Write", {"file_path": "a.md"})
    registry.begin_or_get_placeholder("2", "Edit")
    registry.clear_session()
    assert len(registry) == 0
    assert registry.get("1") is None
