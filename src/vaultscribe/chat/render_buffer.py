"""Pending-render buffer that coalesces text re-renders."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

RenderCallback = Callable[[str], None]


class DebouncedRender:
    """Holds the latest text to render and emits it on a timer tick or flush.

    Each :meth:`schedule` replaces the pending text and restarts the window,
    so a burst of deltas collapses into one render. :meth:`flush` renders
    synchronously and is what callers use before handling any non-text event.
    A window of zero or less renders immediately.
    """

    def __init__(self, render: RenderCallback, delay_seconds: float) -> None:
        self._render = render
        self._delay = max(0.0, float(delay_seconds))
        self._pending: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_count = 0

    @property
    def delay_seconds(self) -> float:
        return self._delay

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def flush_count(self) -> int:
        """Number of renders actually emitted."""
        return self._flush_count

    def schedule(self, text: str) -> None:
        self._pending = text
        if self._delay <= 0:
            self.flush()
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._delay, self._on_timer)

    def flush(self) -> bool:
        """Render pending text now; return ``False`` when nothing was pending."""

        self._cancel_timer()
        if self._pending is None:
            return False
        text, self._pending = self._pending, None
        self._flush_count += 1
        self._render(text)
        return True

    def discard(self) -> None:
        """Drop pending text without rendering it."""
        self._cancel_timer()
        self._pending = None

    def _on_timer(self) -> None:
        self._timer = None
        try:
            self.flush()
        except Exception:  # pragma: no cover
            LOGGER.exception("Debounced text render failed")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


__all__ = ["DebouncedRender", "RenderCallback"]
