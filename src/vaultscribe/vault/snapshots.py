"""Snapshot providers: the file store contract used for before/after capture.

The core only ever talks to a :class:`SnapshotProvider`. ``read`` returns
``None`` for a file that does not exist, which callers record as the explicit
"did not exist" before-state. Failures raise :class:`SnapshotError`.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol, TypeVar, runtime_checkable

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import ErrorCode, SnapshotError
from ..utils.file_io import decode_text, sniff_encoding, write_text

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_PERMANENT_OS_ERRORS: tuple[type[OSError], ...] = (
    FileNotFoundError,
    IsADirectoryError,
    NotADirectoryError,
    PermissionError,
)

# (codec, byte order mark) used for files the provider has not read yet
_DEFAULT_ENCODING: tuple[str, bool] = ("utf-8", False)


@runtime_checkable
class SnapshotProvider(Protocol):
    """Opaque key-value file API keyed by vault-relative path."""

    async def read(self, path: str) -> str | None:
        """Return the text at ``path`` or ``None`` when the file is absent."""
        ...

    async def write(self, path: str, text: str) -> None:
        """Create or overwrite ``path`` with ``text``."""
        ...

    async def delete(self, path: str) -> bool:
        """Delete ``path``; return ``False`` if it was already absent."""
        ...


class MemorySnapshotProvider:
    """In-process snapshot provider backed by a dict."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})

    async def read(self, path: str) -> str | None:
        return self.files.get(path)

    async def write(self, path: str, text: str) -> None:
        self.files[path] = text

    async def delete(self, path: str) -> bool:
        return self.files.pop(path, None) is not None


class VaultSnapshotProvider:
    """Snapshot provider over a vault directory on the local filesystem.

    Paths are vault-relative; anything resolving outside the root is refused.
    Blocking IO runs in a worker thread and transient ``OSError``s are retried
    a bounded number of times.

    Text is returned exactly as stored, line endings included. The encoding
    (and byte order mark) last seen for a path is reused when writing it back,
    so a revert or restore reproduces the original bytes.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        retry_attempts: int = 3,
        retry_min_seconds: float = 0.05,
        retry_max_seconds: float = 0.5,
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._retry_attempts = max(1, int(retry_attempts))
        self._retry_min_seconds = max(0.0, float(retry_min_seconds))
        self._retry_max_seconds = max(self._retry_min_seconds, float(retry_max_seconds))
        self._encodings: dict[Path, tuple[str, bool]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "VaultSnapshotProvider":
        if not settings.vault_path:
            raise ValueError("Settings.vault_path is required for a vault snapshot provider")
        return cls(
            settings.vault_path,
            retry_attempts=settings.file_retry_attempts,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )

    @property
    def root(self) -> Path:
        return self._root

    async def read(self, path: str) -> str | None:
        target = self.resolve(path)

        def _read() -> tuple[str, tuple[str, bool]] | None:
            if not target.is_file():
                return None
            raw = target.read_bytes()
            encoding = sniff_encoding(raw)
            return decode_text(raw, encoding=encoding[0], normalize_newlines=False), encoding

        result = await self._run("read", path, _read)
        if result is None:
            return None
        text, encoding = result
        self._encodings[target] = encoding
        return text

    async def write(self, path: str, text: str) -> None:
        target = self.resolve(path)
        codec, bom = self._encodings.get(target, _DEFAULT_ENCODING)
        try:
            text.encode(codec)
        except UnicodeEncodeError:
            LOGGER.warning("VaultSnapshotProvider.write: %s cannot be stored as %s; using utf-8", path, codec)
            codec, bom = _DEFAULT_ENCODING
        await self._run("write", path, lambda: write_text(target, text, encoding=codec, bom=bom))
        self._encodings[target] = (codec, bom)
        LOGGER.debug("VaultSnapshotProvider.write: %s (%d chars, %s)", path, len(text), codec)

    async def delete(self, path: str) -> bool:
        target = self.resolve(path)

        def _delete() -> bool:
            try:
                target.unlink()
            except FileNotFoundError:
                return False
            return True

        deleted = await self._run("delete", path, _delete)
        LOGGER.debug("VaultSnapshotProvider.delete: %s (existed=%s)", path, deleted)
        return deleted

    def resolve(self, path: str) -> Path:
        """Return the absolute location of the vault-relative ``path``."""

        candidate = (self._root / str(path)).resolve()
        if candidate != self._root and not candidate.is_relative_to(self._root):
            raise SnapshotError(
                error_code=ErrorCode.PATH_OUTSIDE_VAULT,
                message=f"Path {path} resolves outside the vault",
                suggestion="Use a vault-relative path",
                path=str(path),
                operation="resolve",
            )
        return candidate

    async def _run(self, operation: str, path: str, func: Callable[[], T]) -> T:
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await asyncio.to_thread(func)
        except OSError as exc:
            raise SnapshotError.for_operation(operation, path, exc) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_min_seconds,
                max=self._retry_max_seconds,
            ),
            retry=retry_if_exception(_is_transient_os_error),
        )


def _is_transient_os_error(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and not isinstance(exc, _PERMANENT_OS_ERRORS)


__all__ = [
    "SnapshotProvider",
    "MemorySnapshotProvider",
    "VaultSnapshotProvider",
]
