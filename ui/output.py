"""
Output formatting -- JSON response bodies and streaming headers.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from server.adaptive import AdaptiveParams
from server.constants import NO_CACHE_HEADERS
from server.info import ServerInfo
from server.latency import LatencyReport

OCTET_STREAM = "application/octet-stream"


def _number(value: float) -> str:
    """Header-friendly number: ``1.0 -> "1"``, ``0.5 -> "0.5"``."""
    return f"{value:g}"


# ---------------------------------------------------------------------------
# Streaming headers
# ---------------------------------------------------------------------------

def download_headers(
    size_mb: float,
    pattern: str,
    connections: int,
    length: int,
    start_time: float,
) -> Dict[str, str]:
    return {
        "Content-Type": OCTET_STREAM,
        "Content-Length": str(length),
        **NO_CACHE_HEADERS,
        "X-Test-Start": repr(start_time),
        "X-Test-Size": _number(size_mb),
        "X-Pattern": pattern,
        "X-Connections": str(connections),
    }


def adaptive_headers(params: AdaptiveParams, start_time: float) -> Dict[str, str]:
    return {
        "Content-Type": OCTET_STREAM,
        **NO_CACHE_HEADERS,
        "X-Test-Type": "adaptive",
        "X-Start-Time": repr(start_time),
        "X-Pattern": params.pattern.value,
        "X-Initial-Size": _number(params.initial_mb),
        "X-Max-Size": _number(params.max_mb),
        "X-Duration": _number(params.duration),
        "X-Throttle": _number(params.throttle),
    }


def warmup_headers(start_time: float) -> Dict[str, str]:
    return {
        "Content-Type": OCTET_STREAM,
        **NO_CACHE_HEADERS,
        "X-Warmup-Start": repr(start_time),
    }


# ---------------------------------------------------------------------------
# JSON bodies
# ---------------------------------------------------------------------------

def error_json(message: str, **extra: Any) -> Dict[str, Any]:
    """Structured error body: ``{"error": ...}`` plus optional context."""
    body: Dict[str, Any] = {"error": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def ping_json(
    client_time: float,
    server_time: float,
    sequence: int,
    server_name: str,
) -> Dict[str, Any]:
    return {
        "clientTime": client_time,
        "serverTime": server_time,
        "sequence": sequence,
        "server": server_name,
    }


def info_json(
    info: ServerInfo,
    timestamp: float,
    runtime: Dict[str, Any],
    cache: Optional[Dict[str, int]] = None,
    active_sessions: int = 0,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "server": info.to_dict(),
        "timestamp": timestamp,
        "uptime": runtime.get("uptime", 0),
        "memory": runtime.get("memory", {}),
        "activeSessions": active_sessions,
    }
    if cache is not None:
        body["payloadCache"] = cache
    return body


def latency_json(report: LatencyReport, server_name: str) -> Dict[str, Any]:
    body = report.to_dict()
    body["server"] = server_name
    return body
