"""
Ticker — decides when per-item progress is worth writing to the Run record.

Writing after every item is safe but turns a million-row task into a million
UPDATEs; writing only at the end loses everything on a crash. The ticker writes
at most once per `interval` seconds, so a crash replays at most one interval of
items.
"""
import time
from typing import Callable


class Ticker:
    """
    Usage:
        ticker = Ticker(1.0, persist=lambda pending: save_progress())
        for item in items:
            process(item)
            if not ticker.tick():
                break   # persist reported the run is no longer ours
        ticker.flush()

    `persist(pending)` receives the number of ticks since the last write and
    returns False when the write was rejected.
    """

    def __init__(self, interval: float, persist: Callable[[int], bool], clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._persist = persist
        self._clock = clock
        self._pending = 0
        self._last_persisted_at = clock()

    @property
    def pending(self) -> int:
        return self._pending

    def tick(self, count: int = 1) -> bool:
        self._pending += count
        if self._clock() - self._last_persisted_at >= self.interval:
            return self.flush()
        return True

    def flush(self) -> bool:
        """Persist pending ticks now, if there are any."""
        if not self._pending:
            return True
        ok = self._persist(self._pending)
        self._pending = 0
        self._last_persisted_at = self._clock()
        return ok
