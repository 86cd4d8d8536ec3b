"""Tests for :mod:`vaultscribe.services.settings`."""

from __future__ import annotations

import json
from pathlib import Path

from vaultscribe.services.settings import DEFAULT_MUTATION_TOOLS, Settings, SettingsStore


def test_defaults() -> None:
    settings = Settings()
    assert settings.render_debounce_ms == 150
    assert settings.debounce_seconds == 0.15
    assert settings.mutation_tool_set == frozenset(DEFAULT_MUTATION_TOOLS)
    assert settings.diff_preview_max_lines == 40


def test_negative_debounce_clamps_to_zero() -> None:
    assert Settings(render_debounce_ms=-5).debounce_seconds == 0.0


def test_settings_store_round_trip(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    original = Settings(vault_path="/vault", mutation_tools=["Write", "Edit", "MultiEdit"], render_debounce_ms=80)

    store.save(original)
    loaded = store.load()

    assert loaded == original
    payload = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert payload["version"] == 1


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    assert SettingsStore(tmp_path / "absent.json").load() == Settings()


def test_invalid_json_is_tolerated(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert SettingsStore(path).load() == Settings()


def test_unknown_keys_are_ignored_and_file_migrated(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"render_debounce_ms": 90, "theme": "dark"}), encoding="utf-8")

    loaded = SettingsStore(path).load()

    assert loaded.render_debounce_ms == 90
    migrated = json.loads(path.read_text(encoding="utf-8"))
    assert migrated["version"] == 1
    assert "theme" not in migrated


def test_explicit_overrides_apply(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    loaded = store.load(overrides={"diff_preview_max_lines": 5, "unknown": 1, "vault_path": None})
    assert loaded.diff_preview_max_lines == 5
    assert loaded.vault_path is None


def test_environment_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VAULTSCRIBE_VAULT_PATH", "/env/vault")
    monkeypatch.setenv("VAULTSCRIBE_RENDER_DEBOUNCE_MS", "25")
    monkeypatch.setenv("VAULTSCRIBE_DEBUG_EVENT_LOGGING", "yes")

    loaded = SettingsStore(tmp_path / "settings.json").load(overrides={"render_debounce_ms": 500})

    assert loaded.vault_path == "/env/vault"
    assert loaded.render_debounce_ms == 25
    assert loaded.debug_event_logging is True


def test_invalid_integer_environment_value_is_ignored(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VAULTSCRIBE_DIFF_PREVIEW_MAX_LINES", "many")
    loaded = SettingsStore(tmp_path / "settings.json").load()
    assert loaded.diff_preview_max_lines == 40


def test_mutation_tools_accept_comma_separated_string(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"version": 1, "mutation_tools": "Write, Edit ,MultiEdit"}), encoding="utf-8")

    loaded = SettingsStore(path).load()

    assert loaded.mutation_tool_set == frozenset({"Write", "Edit", "MultiEdit"})
