"""
Synthetic payload generation with a bounded, shared cache.

Buffers are keyed by ``(size_bytes, pattern)`` and generated at most once per
key while they stay cached.  The cache is least-recently-used with both an
entry-count and a total-byte limit, so the continuously varying chunk sizes
requested by the adaptive controller cannot grow it without bound.
"""
from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, NamedTuple

from .constants import (
    BYTES_PER_MB,
    CACHE_MAX_ENTRIES,
    CACHE_MAX_MB,
    COMPRESSIBLE_BYTE,
    INCOMPRESSIBLE_MULTIPLIER,
    INCOMPRESSIBLE_OFFSET,
    PREWARM_PATTERNS,
    PREWARM_SIZES,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

class Pattern(str, Enum):
    """Byte-content strategy for a payload."""

    RANDOM = "random"
    COMPRESSIBLE = "compressible"
    INCOMPRESSIBLE = "incompressible"

    @classmethod
    def parse(cls, value) -> Pattern:  # noqa: ANN001
        """Resolve *value* to a pattern; anything unknown means ``RANDOM``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.RANDOM


class PayloadKey(NamedTuple):
    size_bytes: int
    pattern: Pattern


def size_in_bytes(size_mb: float) -> int:
    """Exact byte count for *size_mb* (fractional bytes are dropped)."""
    return int(size_mb * BYTES_PER_MB)


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------

# (i * 137 + 19) mod 256 has period 256 because 137 is odd.
_INCOMPRESSIBLE_CYCLE = bytes(
    (i * INCOMPRESSIBLE_MULTIPLIER + INCOMPRESSIBLE_OFFSET) % 256 for i in range(256)
)


def generate_payload(size_bytes: int, pattern: Pattern) -> bytes:
    """Build a fresh buffer of exactly *size_bytes* bytes."""
    if size_bytes < 0:
        raise ValueError(f"Payload size must be non-negative, got {size_bytes}")

    if pattern is Pattern.COMPRESSIBLE:
        return bytes([COMPRESSIBLE_BYTE]) * size_bytes
    if pattern is Pattern.INCOMPRESSIBLE:
        repeats = size_bytes // len(_INCOMPRESSIBLE_CYCLE) + 1
        return (_INCOMPRESSIBLE_CYCLE * repeats)[:size_bytes]
    return os.urandom(size_bytes)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@dataclass
class CacheStats:
    entries: int = 0
    bytes_cached: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "entries": self.entries,
            "bytes": self.bytes_cached,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


class PayloadCache:
    """
    Process-wide payload store.

    ``get`` is safe to call from any session; generation for a key happens
    under a lock so concurrent first access produces a single buffer.
    """

    def __init__(
        self,
        max_entries: int = CACHE_MAX_ENTRIES,
        max_mb: float = CACHE_MAX_MB,
    ) -> None:
        self.max_entries = max_entries
        self.max_bytes = size_in_bytes(max_mb)
        self._entries: OrderedDict[PayloadKey, bytes] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # -- Lookup -------------------------------------------------------------

    def get(self, size_mb: float, pattern="random") -> bytes:  # noqa: ANN001
        key = PayloadKey(size_in_bytes(size_mb), Pattern.parse(pattern))

        with self._lock:
            buf = self._entries.get(key)
            if buf is not None:
                self._entries.move_to_end(key)
                self._stats.hits += 1
                return buf

            self._stats.misses += 1
            buf = generate_payload(key.size_bytes, key.pattern)
            self._store(key, buf)
            return buf

    def _store(self, key: PayloadKey, buf: bytes) -> None:
        if len(buf) > self.max_bytes:
            logger.debug("Payload %s exceeds the cache byte limit; not cached", key)
            return

        self._entries[key] = buf
        self._stats.bytes_cached += len(buf)

        while (
            len(self._entries) > self.max_entries
            or self._stats.bytes_cached > self.max_bytes
        ):
            old_key, old_buf = self._entries.popitem(last=False)
            self._stats.bytes_cached -= len(old_buf)
            self._stats.evictions += 1
            logger.debug("Evicted payload %s", old_key)

    # -- Lifecycle ----------------------------------------------------------

    def prewarm(
        self,
        sizes: Iterable[float] = PREWARM_SIZES,
        patterns: Iterable[str] = PREWARM_PATTERNS,
    ) -> int:
        """Generate the common buffers up front.  Returns entries cached."""
        patterns = list(patterns)
        for size in sizes:
            for pattern in patterns:
                self.get(size, pattern)
        return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._stats.bytes_cached = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                bytes_cached=self._stats.bytes_cached,
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
            )
