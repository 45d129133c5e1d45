"""
Aggregates for latency series and transfer throughput.

Numbers are kept as floats; the 3-decimal strings clients see are produced
only by the ``to_dict`` methods and :func:`format_fixed`.
"""
from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Dict, List

from .constants import BYTES_PER_MB, DECIMALS


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Summary of one probe: count, mean, extremes, and spread (ms)."""

    samples: List[float] = field(default_factory=list)
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    jitter: float = 0.0
    count: int = 0

    def calculate(self) -> None:
        if not self.samples:
            return
        self.count = len(self.samples)
        self.min = min(self.samples)
        self.max = max(self.samples)
        self.mean = statistics.fmean(self.samples)
        self.jitter = calculate_jitter(self.samples)

    def to_dict(self) -> Dict[str, object]:
        return {
            "count": self.count,
            "average": format_fixed(self.mean),
            "minimum": format_fixed(self.min),
            "maximum": format_fixed(self.max),
            "jitter": format_fixed(self.jitter),
        }


@dataclass
class SpeedStats:
    """Throughput over one transfer, in binary megabits per second."""

    bytes_transferred: int = 0
    duration_ms: float = 0.0
    speed_mbps: float = 0.0

    def calculate(self) -> None:
        self.speed_mbps = calculate_mbps(self.bytes_transferred, self.duration_ms / 1000)

    def to_dict(self) -> Dict[str, object]:
        return {
            "bytes": self.bytes_transferred,
            "duration_ms": format_fixed(self.duration_ms),
            "speed_mbps": format_fixed(self.speed_mbps),
        }


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def calculate_jitter(samples: List[float]) -> float:
    """Spread of the samples: ``max - min``."""
    if not samples:
        return 0.0
    return max(samples) - min(samples)


def calculate_mbps(size_bytes: int, seconds: float) -> float:
    """``bytes * 8 / (seconds * 1024 * 1024)``; zero for a zero-length window."""
    if seconds <= 0:
        return 0.0
    return (size_bytes * 8) / (seconds * BYTES_PER_MB)


def calculate_efficiency(size_bytes: int, expected_mb: float) -> float:
    """Received bytes as a percentage of the declared test size."""
    if expected_mb <= 0:
        return 100.0
    return size_bytes / (expected_mb * BYTES_PER_MB) * 100


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_fixed(value: float, places: int = DECIMALS) -> str:
    """Fixed-point string, e.g. ``12.5 -> "12.500"``."""
    return f"{value:.{places}f}"
