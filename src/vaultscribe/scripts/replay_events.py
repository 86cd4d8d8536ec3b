"""CLI utility to replay a recorded agent event stream through the reducer."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Sequence, TextIO

from vaultscribe.chat.controller import ChatController
from vaultscribe.chat.message_model import ToolUseRecord
from vaultscribe.chat.presentation import describe_tool_block
from vaultscribe.chat.stream_reducer import CancellationToken, SessionState
from vaultscribe.services.settings import Settings
from vaultscribe.utils.logging import configure_from_settings
from vaultscribe.vault.snapshots import MemorySnapshotProvider, SnapshotProvider, VaultSnapshotProvider


@dataclass(slots=True)
class _Block:
    kind: str
    text: str = ""
    record: ToolUseRecord | None = None
    progress: str = ""


@dataclass(slots=True)
class ConsoleRenderSink:
    """Render sink that keeps blocks in memory and prints them on demand."""

    max_diff_lines: int = 40
    blocks: list[_Block] = field(default_factory=list)
    loading: bool = False

    def append_text_block(self, text: str) -> int:
        self.blocks.append(_Block("text", text=text))
        return len(self.blocks) - 1

    def update_text_block(self, handle: int, text: str) -> None:
        self.blocks[handle].text = text

    def append_tool_block(self, record: ToolUseRecord) -> int:
        self.blocks.append(_Block("tool", record=record))
        return len(self.blocks) - 1

    def replace_tool_block(self, handle: int, record: ToolUseRecord) -> int:
        self.blocks[handle] = _Block("tool", record=record)
        return handle

    def update_progress(self, handle: int, text: str) -> None:
        self.blocks[handle].progress = text

    def append_status_block(self, kind: str, text: str) -> None:
        self.blocks.append(_Block(kind, text=text))

    def set_loading(self, visible: bool) -> None:
        self.loading = visible

    def remove_loading(self) -> None:
        self.loading = False

    def scroll_to_end(self) -> None:
        return

    def dump(self, destination: TextIO) -> None:
        for block in self.blocks:
            if block.kind == "text":
                destination.write(f"{block.text}\n\n")
                continue
            if block.kind != "tool" or block.record is None:
                destination.write(f"[{block.kind}] {block.text}\n\n")
                continue
            view = describe_tool_block(block.record, max_diff_lines=self.max_diff_lines)
            destination.write(f"[{view.status.value}] {view.title}\n")
            if view.result is not None:
                destination.write(f"  result: {view.result}\n")
            elif block.progress:
                destination.write(f"  {block.progress}\n")
            if view.has_change:
                destination.write(f"  {view.action_label} available (+{view.added_count}/-{view.removed_count})\n")
                for line in view.diff_text.splitlines():
                    destination.write(f"    {line}\n")
            destination.write("\n")


def load_events(path: Path) -> list[Any]:
    """Read raw protocol payloads from a JSONL file.

    Lines may hold bare payloads or ``event`` entries written by the debug
    event log; other event-log entries are ignored.
    """

    events: list[Any] = []
    with path.open("r", encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                entry = json.loads(text)
            except json.JSONDecodeError as exc:
                print(f"{path}:{number}: skipping invalid JSON ({exc.msg})", file=sys.stderr)
                continue
            if isinstance(entry, dict) and "event" in entry and "type" not in entry:
                if entry.get("event") == "event" and not entry.get("skipped"):
                    events.append(entry.get("payload"))
                continue
            events.append(entry)
    return events


async def _replay(events: Sequence[Any], *, settings: Settings, provider: SnapshotProvider) -> tuple[SessionState, ChatController, ConsoleRenderSink]:
    sink = ConsoleRenderSink(max_diff_lines=settings.diff_preview_max_lines)

    async def _stream(_prompt: str, _session_id: str | None, _token: CancellationToken) -> AsyncIterator[Any]:
        for event in events:
            yield event

    controller = ChatController(settings=settings, provider=provider, sink=sink, stream_factory=_stream)
    session = await controller.send_query("replay")
    return session.state, controller, sink


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Replay a recorded agent event stream (JSONL)")
    parser.add_argument("source", type=Path, help="Path to the JSONL event file")
    parser.add_argument(
        "--vault",
        type=Path,
        default=None,
        help="Vault directory used for file snapshots (defaults to an in-memory store)",
    )
    parser.add_argument(
        "--debounce-ms",
        type=int,
        default=Settings().render_debounce_ms,
        help="Text render coalescing window in milliseconds",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files and debug event logs")
    parser.add_argument("--event-log", action="store_true", help="Write a JSONL debug event log for the replayed query")
    parser.add_argument("--verbose", action="store_true", help="Log reducer activity at DEBUG level")
    args = parser.parse_args(argv)

    if not args.source.is_file():
        print(f"Event file not found: {args.source}", file=sys.stderr)
        return 1

    settings = Settings(
        vault_path=str(args.vault) if args.vault else None,
        render_debounce_ms=max(0, args.debounce_ms),
        debug_logging=args.verbose,
        debug_event_logging=args.event_log,
        log_dir=str(args.log_dir) if args.log_dir else None,
    )
    if settings.debug_logging:
        configure_from_settings(settings)

    provider: SnapshotProvider
    if args.vault is not None:
        provider = VaultSnapshotProvider.from_settings(settings)
    else:
        provider = MemorySnapshotProvider()

    events = load_events(args.source)
    state, controller, sink = asyncio.run(_replay(events, settings=settings, provider=provider))

    sink.dump(sys.stdout)
    changes = list(controller.ledger)
    if changes:
        print(f"Recorded {len(changes)} change(s):")
        for change in changes:
            print(f"  • {change.operation.value} {change.file_path} (+{change.added_count}/-{change.removed_count})")
    print(f"Session {state.value}")
    return 0 if state is SessionState.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
