"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from ..utils.file_io import read_text, write_text

__all__ = [
    "Settings",
    "SettingsStore",
    "DEFAULT_MUTATION_TOOLS",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".vaultscribe"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})


def _parse_flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


def _parse_int(raw: str) -> int:
    return int(raw.strip(), 10)


def _parse_path(raw: str) -> str:
    return raw.strip()


# env var -> (Settings field, parser)
_ENV_FIELDS: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "VAULTSCRIBE_VAULT_PATH": ("vault_path", _parse_path),
    "VAULTSCRIBE_LOG_DIR": ("log_dir", _parse_path),
    "VAULTSCRIBE_DEBUG_LOGGING": ("debug_logging", _parse_flag),
    "VAULTSCRIBE_DEBUG_EVENT_LOGGING": ("debug_event_logging", _parse_flag),
    "VAULTSCRIBE_RENDER_DEBOUNCE_MS": ("render_debounce_ms", _parse_int),
    "VAULTSCRIBE_DIFF_PREVIEW_MAX_LINES": ("diff_preview_max_lines", _parse_int),
}

DEFAULT_MUTATION_TOOLS: tuple[str, ...] = ("Write", "Edit")


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    vault_path: str | None = None
    render_debounce_ms: int = 150
    mutation_tools: list[str] = field(default_factory=lambda: list(DEFAULT_MUTATION_TOOLS))
    diff_preview_max_lines: int = 40
    file_retry_attempts: int = 3
    retry_min_seconds: float = 0.05
    retry_max_seconds: float = 0.5
    debug_logging: bool = False
    debug_event_logging: bool = False
    log_dir: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def debounce_seconds(self) -> float:
        """Return the text render coalescing window in seconds."""

        return max(0, int(self.render_debounce_ms)) / 1000.0

    @property
    def mutation_tool_set(self) -> frozenset[str]:
        """Return the closed set of tool names that can create or modify files."""

        return frozenset(str(name) for name in self.mutation_tools if str(name).strip())


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying explicit/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            if "mutation_tools" in data:
                data["mutation_tools"] = _coerce_tool_names(data["mutation_tools"])
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
        LOGGER.debug("Settings loaded from %s (version=%s)", self._path, payload.get("version"))

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - depends on filesystem
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="explicit")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        write_text(self._path, json.dumps(payload, indent=2, sort_keys=True))
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = read_text(self._path)
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        metadata_override = filtered.get("metadata")
        if isinstance(metadata_override, Mapping):
            merged_metadata = dict(settings.metadata or {})
            merged_metadata.update(metadata_override)
            filtered["metadata"] = merged_metadata
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, (field_name, parse) in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                overrides[field_name] = parse(raw)
            except ValueError:
                LOGGER.warning("Ignoring environment override %s=%r", env_name, raw)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def _coerce_tool_names(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        LOGGER.warning("Ignoring mutation_tools setting of type %s", type(value).__name__)
        return list(DEFAULT_MUTATION_TOOLS)
    return [str(name).strip() for name in value if str(name).strip()]
