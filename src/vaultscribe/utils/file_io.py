"""Text file helpers shared by the vault snapshot provider and settings store."""

from __future__ import annotations

import codecs
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

__all__ = ["decode_text", "read_text", "sniff_encoding", "write_text"]

# Longest marker first so UTF-32 LE is not mistaken for UTF-16 LE.
_BYTE_ORDER_MARKS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)
_FALLBACK_ENCODINGS: tuple[str, ...] = ("utf-8", "cp1252")


def decode_text(raw: bytes, *, encoding: str | None = None, normalize_newlines: bool = True) -> str:
    """Decode note bytes, honouring a byte order mark when present.

    Without a BOM or an explicit ``encoding`` the bytes are tried as UTF-8,
    then cp1252, then latin-1 (which always succeeds).
    """

    if encoding is not None:
        text = raw.decode(encoding)
    else:
        text = _decode_guessing(raw)
    if text.startswith("\ufeff"):
        text = text[1:]
    if normalize_newlines and "\r" in text:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text


def sniff_encoding(raw: bytes) -> tuple[str, bool]:
    """Return ``(codec, has_bom)`` for note bytes, using the same rules as :func:`decode_text`."""

    for marker, codec in _BYTE_ORDER_MARKS:
        if raw.startswith(marker):
            return codec, True
    for codec in _FALLBACK_ENCODINGS:
        try:
            raw.decode(codec)
        except UnicodeDecodeError:
            continue
        return codec, False
    return "latin-1", False


def read_text(path: Path | str, *, encoding: str | None = None, normalize_newlines: bool = True) -> str:
    """Read ``path`` as text. See :func:`decode_text` for decoding rules."""

    return decode_text(Path(path).read_bytes(), encoding=encoding, normalize_newlines=normalize_newlines)


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    bom: bool = False,
    atomic: bool = True,
) -> Path:
    """Write ``content`` verbatim (no newline translation), creating parent folders.

    ``bom`` prefixes the encoded text with a byte order mark. With ``atomic``
    the text goes to a sibling temp file that replaces the target, so readers
    never observe a half-written note.
    """

    if bom and not content.startswith("\ufeff"):
        content = "\ufeff" + content
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if atomic:
        with _replacing(target, encoding) as handle:
            handle.write(content)
    else:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(content)
    return target


@contextmanager
def _replacing(target: Path, encoding: str) -> Iterator[IO[str]]:
    descriptor, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _decode_guessing(raw: bytes) -> str:
    codec, has_bom = sniff_encoding(raw)
    if has_bom:
        raw = raw[len(_bom_for(codec)):]
    return raw.decode(codec)


def _bom_for(codec: str) -> bytes:
    return next(marker for marker, name in _BYTE_ORDER_MARKS if name == codec)
