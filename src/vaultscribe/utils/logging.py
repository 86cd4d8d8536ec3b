"""Logging configuration for the relay and its command line tools."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from ..services.settings import Settings

__all__ = ["LOG_FILE_NAME", "setup_logging", "configure_from_settings", "get_log_path", "log_directory"]

LOG_FILE_NAME = "vaultscribe.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that chatter at DEBUG during every stream.
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "jsonschema", "tenacity")

_active_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install rotating file (and optionally console) handlers on the root logger.

    Repeated calls return the existing log path unless ``force`` is set.
    The directory comes from ``log_dir``, then ``VAULTSCRIBE_LOG_DIR``, then
    ``~/.vaultscribe/logs``.
    """

    global _active_log_path
    if _active_log_path is not None and not force:
        return _active_log_path

    directory = log_directory(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    logging.basicConfig(
        level=level,
        handlers=_build_handlers(log_path, level, console, max_bytes, backup_count),
        force=True,
    )
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _active_log_path = log_path
    logging.getLogger(__name__).debug("Logging to %s at level %s", log_path, logging.getLevelName(level))
    return log_path


def configure_from_settings(settings: "Settings", *, console: bool = False) -> Path:
    """Apply ``settings.debug_logging`` and ``settings.log_dir``."""

    level = logging.DEBUG if settings.debug_logging else logging.INFO
    return setup_logging(level, log_dir=settings.log_dir, console=console, force=True)


def get_log_path() -> Path | None:
    """Return the file configured by :func:`setup_logging`, if any."""

    return _active_log_path


def log_directory(log_dir: Path | str | None = None) -> Path:
    chosen = log_dir or os.environ.get("VAULTSCRIBE_LOG_DIR") or Path.home() / ".vaultscribe" / "logs"
    return Path(chosen).expanduser()


def _build_handlers(
    log_path: Path,
    level: int,
    console: bool,
    max_bytes: int,
    backup_count: int,
) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers
