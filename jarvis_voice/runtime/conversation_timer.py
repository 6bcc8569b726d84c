"""Timer closing the post-response conversation window."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional


class ConversationTimer:
    """Fire ``on_timeout`` once unless cancelled first; re-arming replaces."""

    def __init__(self, window: float, on_timeout: Callable[[], None]) -> None:
        self.window = window
        self._on_timeout = on_timeout
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, window: float | None = None) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.window if window is None else window, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._on_timeout()
