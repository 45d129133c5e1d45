"""
Adaptive, duration-bound download.

Models a slow-start curve for exercising client-side adaptive bitrate
logic.  The ramped target grows linearly from ``initial`` to ``max`` over
the first half of the run and then holds; each tick sends a small slice of
that target (scaled by ``throttle``) and then waits a delay that grows
slowly with elapsed time.  The run ends when ``duration`` has elapsed,
regardless of how many bytes went out.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .clock import CLOCK, Clock
from .constants import (
    ADAPTIVE_BASE_DELAY_MS,
    ADAPTIVE_CHUNK_FRACTION,
    ADAPTIVE_CHUNK_GRID_MB,
    ADAPTIVE_DELAY_GROWTH,
    ADAPTIVE_MAX_DELAY_MS,
    DEFAULT_ADAPTIVE_DURATION,
    DEFAULT_ADAPTIVE_INITIAL_MB,
    DEFAULT_ADAPTIVE_MAX_MB,
    DEFAULT_THROTTLE,
    MAX_ADAPTIVE_DURATION,
    MAX_ADAPTIVE_MB,
    MIN_ADAPTIVE_CHUNK_MB,
    MIN_ADAPTIVE_DURATION,
    MIN_ADAPTIVE_INITIAL_MB,
    MIN_THROTTLE,
)
from .payload import PayloadCache, Pattern
from .session import Sink, StreamSession, drive
from .writer import ChunkedStreamWriter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------

def _positive_or(value: Any, default: float) -> float:
    """Parse *value* as a float; missing, invalid, non-finite or zero means *default*."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed) or parsed == 0:
        return default
    return parsed


@dataclass(frozen=True)
class AdaptiveParams:
    initial_mb: float = DEFAULT_ADAPTIVE_INITIAL_MB
    max_mb: float = DEFAULT_ADAPTIVE_MAX_MB
    duration: float = DEFAULT_ADAPTIVE_DURATION
    pattern: Pattern = Pattern.RANDOM
    throttle: float = DEFAULT_THROTTLE

    @classmethod
    def clamp(
        cls,
        initial: Any = None,
        maximum: Any = None,
        duration: Any = None,
        pattern: Any = None,
        throttle: Any = None,
    ) -> AdaptiveParams:
        """Build parameters from loosely-typed input, clamping every field."""
        initial_mb = max(_positive_or(initial, DEFAULT_ADAPTIVE_INITIAL_MB), MIN_ADAPTIVE_INITIAL_MB)
        max_mb = min(_positive_or(maximum, DEFAULT_ADAPTIVE_MAX_MB), MAX_ADAPTIVE_MB)
        initial_mb = min(initial_mb, MAX_ADAPTIVE_MB)
        max_mb = max(max_mb, initial_mb)

        seconds = _positive_or(duration, DEFAULT_ADAPTIVE_DURATION)
        seconds = min(max(seconds, MIN_ADAPTIVE_DURATION), MAX_ADAPTIVE_DURATION)

        return cls(
            initial_mb=initial_mb,
            max_mb=max_mb,
            duration=seconds,
            pattern=Pattern.parse(pattern or Pattern.RANDOM),
            throttle=max(_positive_or(throttle, DEFAULT_THROTTLE), MIN_THROTTLE),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial": self.initial_mb,
            "max": self.max_mb,
            "duration": self.duration,
            "pattern": self.pattern.value,
            "throttle": self.throttle,
        }


# ---------------------------------------------------------------------------
# Curve
# ---------------------------------------------------------------------------

def target_size_mb(params: AdaptiveParams, elapsed: float) -> float:
    """Ramped target: reaches ``max_mb`` at the halfway point, then holds."""
    progress = elapsed / params.duration
    target = params.initial_mb + (params.max_mb - params.initial_mb) * min(progress * 2, 1.0)
    return min(target, params.max_mb)


def chunk_size_mb(params: AdaptiveParams, elapsed: float) -> float:
    """Per-tick payload size, snapped up to the cache grid and never above max."""
    raw = max(
        target_size_mb(params, elapsed) * ADAPTIVE_CHUNK_FRACTION * params.throttle,
        MIN_ADAPTIVE_CHUNK_MB,
    )
    raw = min(raw, params.max_mb)
    steps = math.ceil(round(raw / ADAPTIVE_CHUNK_GRID_MB, 6))
    return min(round(steps * ADAPTIVE_CHUNK_GRID_MB, 2), params.max_mb)


def next_delay_ms(params: AdaptiveParams, elapsed: float) -> float:
    """Pause before the next tick (*elapsed* in seconds)."""
    return min(
        ADAPTIVE_MAX_DELAY_MS,
        ADAPTIVE_BASE_DELAY_MS + elapsed * ADAPTIVE_DELAY_GROWTH / params.throttle,
    )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class AdaptiveRateController:
    """Duration-bound download driver."""

    def __init__(
        self,
        cache: PayloadCache,
        writer: Optional[ChunkedStreamWriter] = None,
        clock: Clock = CLOCK,
    ) -> None:
        self.cache = cache
        self.writer = writer or ChunkedStreamWriter()
        self.clock = clock

    async def run(
        self,
        params: AdaptiveParams,
        sink: Sink,
        session: Optional[StreamSession] = None,
    ) -> StreamSession:
        if session is None:
            session = self.new_session(params)
        start = session.started_at
        deadline = params.duration
        stop_at = start + deadline * 1000

        def _elapsed() -> float:
            return self.clock.elapsed(start) / 1000

        async def _body() -> None:
            while True:
                elapsed = _elapsed()
                if elapsed >= deadline:
                    return

                payload = self.cache.get(chunk_size_mb(params, elapsed), params.pattern)
                await self.writer.pump(payload, sink, session, stop_at=stop_at)

                remaining = deadline - _elapsed()
                if remaining <= 0:
                    return
                delay = min(next_delay_ms(params, elapsed) / 1000, remaining)
                if not await session.token.sleep(delay):
                    return

        return await drive(session, sink, _body)

    def new_session(self, params: AdaptiveParams) -> StreamSession:
        return StreamSession(
            kind="adaptive",
            pattern=params.pattern.value,
            chunk_size=self.writer.chunk_size,
            throttle=params.throttle,
            clock=self.clock,
        )
