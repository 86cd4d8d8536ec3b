"""Standardized error types for the relay core.

Errors carry a machine-readable code plus a human-readable message so they
can be logged, surfaced as notices, or serialized into debug event logs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes used across the relay core."""

    # Snapshot/file store errors
    SNAPSHOT_READ_FAILED = "snapshot_read_failed"
    SNAPSHOT_WRITE_FAILED = "snapshot_write_failed"
    SNAPSHOT_DELETE_FAILED = "snapshot_delete_failed"
    PATH_OUTSIDE_VAULT = "path_outside_vault"

    # Protocol errors
    UNKNOWN_EVENT_TYPE = "unknown_event_type"
    INVALID_EVENT = "invalid_event"

    # Ledger errors
    CHANGE_NOT_FOUND = "change_not_found"

    # General errors
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class VaultscribeError(Exception):
    """Base exception class for all relay core errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for logs and notices."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Snapshot Errors
# -----------------------------------------------------------------------------

@dataclass
class SnapshotError(VaultscribeError):
    """Raised when the file store cannot read, write or delete a path."""

    error_code: str = field(default=ErrorCode.SNAPSHOT_READ_FAILED)
    message: str = field(default="File store operation failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check that the file is accessible and retry")

    path: str = ""
    operation: str = "read"

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.path:
            self.details.setdefault("path", self.path)
        self.details.setdefault("operation", self.operation)

    @classmethod
    def for_operation(cls, operation: str, path: str, cause: BaseException | None = None) -> "SnapshotError":
        """Build an error for ``operation`` (read/write/delete) on ``path``."""
        codes = {
            "read": ErrorCode.SNAPSHOT_READ_FAILED,
            "write": ErrorCode.SNAPSHOT_WRITE_FAILED,
            "delete": ErrorCode.SNAPSHOT_DELETE_FAILED,
        }
        reason = f": {cause}" if cause is not None else ""
        return cls(
            error_code=codes.get(operation, ErrorCode.INTERNAL_ERROR),
            message=f"Could not {operation} {path}{reason}",
            path=path,
            operation=operation,
        )


# -----------------------------------------------------------------------------
# Protocol Errors
# -----------------------------------------------------------------------------

@dataclass
class MalformedEventError(VaultscribeError):
    """Raised when a protocol event has an unknown type or violates its schema."""

    error_code: str = field(default=ErrorCode.INVALID_EVENT)
    message: str = field(default="Malformed stream event")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    event_type: str | None = None

    severity: ClassVar[str] = "warning"


# -----------------------------------------------------------------------------
# Ledger Errors
# -----------------------------------------------------------------------------

@dataclass
class ChangeNotFoundError(VaultscribeError):
    """Raised when a revert/restore targets a change id the ledger does not hold."""

    error_code: str = field(default=ErrorCode.CHANGE_NOT_FOUND)
    message: str = field(default="Change not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="The change may have been cleared with its chat")

    change_id: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.change_id:
            self.details.setdefault("change_id", self.change_id)


__all__ = [
    "ErrorCode",
    "VaultscribeError",
    "SnapshotError",
    "MalformedEventError",
    "ChangeNotFoundError",
]
