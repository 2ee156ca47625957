"""
Frame scheduling.

Redraw requests are coalesced: while a draw is pending further requests
are no-ops, so handlers can request freely.
"""

import asyncio
from typing import Callable, Optional

FRAME_INTERVAL = 1 / 60


class FrameScheduler:
    """Runs ``draw`` at most once per frame interval on the running event loop."""

    def __init__(self, draw: Callable[[], None], interval: float = FRAME_INTERVAL):
        self._draw = draw
        self.interval = interval
        self.pending = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self.frames = 0

    def request(self) -> None:
        """Ask for a draw on the next frame."""
        if self.pending:
            return
        self.pending = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Headless: stays pending until flush()
            return
        self._handle = loop.call_later(self.interval, self._fire)

    def flush(self) -> bool:
        """Draw now if a draw is pending. Returns whether a frame was drawn."""
        if not self.pending:
            return False
        if self._handle is not None:
            self._handle.cancel()
        self._fire()
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.pending = False

    def _fire(self) -> None:
        self._handle = None
        self.pending = False
        self.frames += 1
        self._draw()
