"""
Server identity and runtime snapshot.

``ServerInfo`` is built once at startup and never changes; ``runtime_info``
is sampled per request for ``/api/info``.
"""
from __future__ import annotations

import os
import platform
import socket
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict

from .constants import BYTES_PER_MB

_STARTED = time.monotonic()


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerInfo:
    """Static description of this host."""

    name: str
    location: str
    host: str
    platform: str
    arch: str
    cores: int
    memory: str

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_host(cls, name: str, location: str) -> ServerInfo:
        total = total_memory()
        return cls(
            name=name,
            location=location,
            host=socket.gethostname(),
            platform=sys.platform,
            arch=platform.machine() or "unknown",
            cores=os.cpu_count() or 1,
            memory=f"{round(total / (BYTES_PER_MB * 1024))}GB",
        )

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "location": self.location,
            "host": self.host,
            "platform": self.platform,
            "arch": self.arch,
            "cores": self.cores,
            "memory": self.memory,
        }


# ---------------------------------------------------------------------------
# Host probes
# ---------------------------------------------------------------------------

def _sysconf(name: str) -> int:
    try:
        return int(os.sysconf(name))
    except (AttributeError, ValueError, OSError):
        return 0


def total_memory() -> int:
    """Physical memory in bytes, or 0 where the platform cannot tell."""
    return _sysconf("SC_PAGE_SIZE") * _sysconf("SC_PHYS_PAGES")


def free_memory() -> int:
    """Available physical memory in bytes, or 0 where unknown."""
    return _sysconf("SC_PAGE_SIZE") * _sysconf("SC_AVPHYS_PAGES")


def process_memory() -> int:
    """Peak resident set size of this process in bytes, or 0 where unknown."""
    try:
        import resource
    except ImportError:  # Windows
        return 0
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    return peak if sys.platform == "darwin" else peak * 1024


def uptime() -> float:
    """Seconds since this module was imported."""
    return time.monotonic() - _STARTED


def runtime_info() -> Dict[str, Any]:
    return {
        "uptime": round(uptime(), 3),
        "memory": {
            "used": process_memory(),
            "total": total_memory(),
            "free": free_memory(),
        },
    }
