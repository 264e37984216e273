# cartsync/utils/debounce.py
from __future__ import annotations
from typing import Callable, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Coalesces bursts of trigger() calls into one callback run after `delay`
    seconds of quiet. The callback reads current state when it fires, so the
    outcome equals running it after every trigger.
    """
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.coalesced = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self.delay <= 0:
            self._fire()
            return
        if self._handle is not None:
            self._handle.cancel()
            self.coalesced += 1
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def flush(self) -> None:
        """Run now if something is pending."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        try:
            self._callback()
        except Exception:
            logger.exception("debounced callback failed")
