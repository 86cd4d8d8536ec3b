"""File change tracking: diffs, the change ledger and revert/restore."""

from .diff_engine import DiffKind, DiffLine, changed_only, compute_diff, format_diff, unified_diff
from .ledger import ChangeLedger
from .models import ChangeOperation, FileChange
from .reverter import ChangeActionResult, ChangeReverter

__all__ = [
    "ChangeActionResult",
    "ChangeLedger",
    "ChangeOperation",
    "ChangeReverter",
    "DiffKind",
    "DiffLine",
    "FileChange",
    "changed_only",
    "compute_diff",
    "format_diff",
    "unified_diff",
]
