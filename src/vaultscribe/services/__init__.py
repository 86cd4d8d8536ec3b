"""Service layer helpers (settings, persistence)."""

from .settings import DEFAULT_MUTATION_TOOLS, Settings, SettingsStore

__all__ = [
    "DEFAULT_MUTATION_TOOLS",
    "Settings",
    "SettingsStore",
]
