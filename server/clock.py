"""
High-resolution clock.

``now()`` is monotonic milliseconds with sub-millisecond resolution and is
the only timestamp used for duration math.  ``wall()`` adds an epoch offset
captured once at construction so values echoed to clients as "server time"
are comparable with their own ``Date.now()``.
"""
from __future__ import annotations

import time


class Clock:
    """Monotonic millisecond clock with a fixed epoch offset."""

    def __init__(self) -> None:
        self._epoch_offset = time.time() * 1000 - self.now()

    @staticmethod
    def now() -> float:
        return time.perf_counter() * 1000

    def wall(self) -> float:
        """Monotonic time shifted onto the Unix epoch (ms)."""
        return self.now() + self._epoch_offset

    def to_wall(self, monotonic_ms: float) -> float:
        """Convert a value previously returned by :meth:`now` to epoch ms."""
        return monotonic_ms + self._epoch_offset

    def elapsed(self, since_ms: float) -> float:
        """Milliseconds elapsed since *since_ms* (a :meth:`now` value)."""
        return self.now() - since_ms


CLOCK = Clock()
