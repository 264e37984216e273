# cartsync/utils/locks.py
from __future__ import annotations
from typing import Optional
import logging
import time

logger = logging.getLogger(__name__)


class SingleFlight:
    """
    Non-blocking, in-process busy flag.
    At most one holder at a time; a second acquire is refused instead of
    queued, so overlapping remote writes are dropped rather than reordered.
    Safe without a real lock because the engine runs on a single event loop
    and acquire/release never await.
    """
    def __init__(self, name: str):
        self.name = name
        self._busy = False
        self._since: Optional[float] = None

    @property
    def busy(self) -> bool:
        return self._busy

    def acquire(self) -> bool:
        if self._busy:
            held = time.perf_counter() - (self._since or 0.0)
            logger.debug("single_flight rejected name=%s held_for=%.3fs", self.name, held)
            return False
        self._busy = True
        self._since = time.perf_counter()
        return True

    def release(self) -> None:
        self._busy = False
        self._since = None
