"""
Server-side latency probe.

Takes ``count`` timestamped measurements spaced ``interval`` ms apart and
aggregates them.  Each latency is measured from the start of the probe,
not from the previous measurement.  Nothing is kept between probes.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .clock import CLOCK, Clock
from .constants import (
    DEFAULT_LATENCY_COUNT,
    DEFAULT_LATENCY_INTERVAL_MS,
    MAX_LATENCY_COUNT,
    MIN_LATENCY_COUNT,
    MIN_LATENCY_INTERVAL_MS,
)
from .stats import LatencyStats


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LatencySample:
    """One measurement within a probe."""

    index: int
    start_time: float
    server_time: float
    latency: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "clientStartTime": self.start_time,
            "serverTime": self.server_time,
            "latency": self.latency,
        }


@dataclass
class LatencyReport:
    """All samples of a probe plus their aggregate."""

    samples: List[LatencySample] = field(default_factory=list)
    stats: LatencyStats = field(default_factory=LatencyStats)

    def calculate(self) -> None:
        self.stats = LatencyStats(samples=[s.latency for s in self.samples])
        self.stats.calculate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "measurements": [s.to_dict() for s in self.samples],
            "statistics": self.stats.to_dict(),
        }


# ---------------------------------------------------------------------------
# Parameter parsing
# ---------------------------------------------------------------------------

def _int_or(value: Any, default: int) -> int:
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return parsed or default


def clamp_count(value: Any) -> int:
    count = _int_or(value, DEFAULT_LATENCY_COUNT)
    return max(MIN_LATENCY_COUNT, min(count, MAX_LATENCY_COUNT))


def clamp_interval(value: Any) -> int:
    return max(_int_or(value, DEFAULT_LATENCY_INTERVAL_MS), MIN_LATENCY_INTERVAL_MS)


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

class LatencyProbe:
    """Run one bounded, sequential measurement series."""

    def __init__(self, clock: Clock = CLOCK) -> None:
        self.clock = clock

    async def run(
        self,
        count: int = DEFAULT_LATENCY_COUNT,
        interval_ms: float = MIN_LATENCY_INTERVAL_MS,
    ) -> LatencyReport:
        count = clamp_count(count)
        interval_ms = max(interval_ms, MIN_LATENCY_INTERVAL_MS)

        report = LatencyReport()
        start = self.clock.wall()

        for index in range(count):
            if index:
                await asyncio.sleep(interval_ms / 1000)
            now = self.clock.wall()
            report.samples.append(
                LatencySample(
                    index=index,
                    start_time=start,
                    server_time=now,
                    latency=now - start,
                )
            )

        report.calculate()
        return report
