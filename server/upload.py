"""
Upload measurement.

The HTTP layer hands over the received body together with the
client-declared metadata (start timestamp, test size, pattern, and for the
multi-connection variant a connection id / count).  Throughput is computed
from the client's declared start to the moment the body was fully read.
"""
from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .constants import INTEGRITY_HEX_CHARS
from .stats import calculate_efficiency, calculate_mbps, format_fixed


# ---------------------------------------------------------------------------
# Declared metadata
# ---------------------------------------------------------------------------

def _float_or(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed) or parsed == 0:
        return default
    return parsed


@dataclass(frozen=True)
class UploadMeta:
    """What the client says about the upload it is sending."""

    client_start: Optional[float] = None
    test_size_mb: float = 0.0
    pattern: str = "unknown"
    connection_id: str = "0"
    total_connections: int = 1

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> UploadMeta:
        start = _float_or(headers.get("X-Upload-Start"), 0.0)
        try:
            total = int(headers.get("X-Total-Connections") or 1)
        except ValueError:
            total = 1
        return cls(
            client_start=start or None,
            test_size_mb=_float_or(headers.get("X-Test-Size"), 0.0),
            pattern=headers.get("X-Pattern") or "unknown",
            connection_id=headers.get("X-Connection-Id") or "0",
            total_connections=total or 1,
        )


def integrity_hash(data: bytes) -> str:
    """Short MD5 digest echoed back so the client can verify the payload."""
    return hashlib.md5(data).hexdigest()[:INTEGRITY_HEX_CHARS]


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@dataclass
class UploadReport:
    """Single-connection upload result."""

    size: int
    meta: UploadMeta
    client_start: float
    receive_start: float
    receive_end: float
    integrity: str = "unknown"
    speed_mbps: float = 0.0

    @property
    def processing_time(self) -> float:
        return self.receive_end - self.receive_start

    @property
    def total_time(self) -> float:
        return self.receive_end - self.client_start

    def calculate(self) -> None:
        self.speed_mbps = calculate_mbps(self.size, self.total_time / 1000)

    def to_dict(self, server_name: str) -> Dict[str, Any]:
        return {
            "success": True,
            "timing": {
                "clientStartTime": self.client_start,
                "receiveStartTime": self.receive_start,
                "receiveEndTime": self.receive_end,
                "processingTime": format_fixed(self.processing_time),
                "totalTime": format_fixed(self.total_time),
            },
            "data": {
                "size": self.size,
                "expectedSize": self.meta.test_size_mb,
                "pattern": self.meta.pattern,
                "integrity": self.integrity,
            },
            "performance": {
                "speedMbps": format_fixed(self.speed_mbps),
                "efficiency": format_fixed(
                    calculate_efficiency(self.size, self.meta.test_size_mb), 2
                ),
            },
            "server": server_name,
        }


@dataclass
class MultiUploadReport:
    """Per-connection result of a multi-connection upload."""

    size: int
    meta: UploadMeta
    client_start: float
    receive_time: float
    process_time: float
    speed_mbps: float = 0.0

    @property
    def network_duration(self) -> float:
        return self.receive_time - self.client_start

    @property
    def processing_duration(self) -> float:
        return self.process_time - self.receive_time

    @property
    def total_duration(self) -> float:
        return self.process_time - self.client_start

    def calculate(self) -> None:
        self.speed_mbps = calculate_mbps(self.size, self.total_duration / 1000)

    def to_dict(self, server_name: str) -> Dict[str, Any]:
        return {
            "success": True,
            "connectionId": self.meta.connection_id,
            "totalConnections": self.meta.total_connections,
            "timing": {
                "clientStartTime": self.client_start,
                "receiveTime": self.receive_time,
                "processTime": self.process_time,
                "networkDuration": format_fixed(self.network_duration),
                "processingDuration": format_fixed(self.processing_duration),
                "totalDuration": format_fixed(self.total_duration),
            },
            "data": {
                "size": self.size,
                "expectedSize": self.meta.test_size_mb,
                "pattern": self.meta.pattern,
                "speedMbps": format_fixed(self.speed_mbps),
            },
            "server": server_name,
        }


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------

def measure_upload(
    data: bytes,
    meta: UploadMeta,
    receive_start: float,
    receive_end: float,
) -> UploadReport:
    """Build the single-connection report.  Timestamps are epoch ms."""
    report = UploadReport(
        size=len(data),
        meta=meta,
        client_start=meta.client_start or receive_start,
        receive_start=receive_start,
        receive_end=receive_end,
        integrity=integrity_hash(data),
    )
    report.calculate()
    return report


def measure_multi_upload(
    size: int,
    meta: UploadMeta,
    receive_time: float,
    process_time: float,
) -> MultiUploadReport:
    """Build one connection's report.  Timestamps are epoch ms."""
    report = MultiUploadReport(
        size=size,
        meta=meta,
        client_start=meta.client_start or receive_time,
        receive_time=receive_time,
        process_time=process_time,
    )
    report.calculate()
    return report
