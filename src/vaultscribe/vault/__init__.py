"""Vault file store adapters."""

from .snapshots import MemorySnapshotProvider, SnapshotProvider, VaultSnapshotProvider

__all__ = [
    "MemorySnapshotProvider",
    "SnapshotProvider",
    "VaultSnapshotProvider",
]
