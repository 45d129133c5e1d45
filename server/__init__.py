"""Speedtest server library -- payloads, streaming sessions, and measurement."""

from .adaptive import AdaptiveParams, AdaptiveRateController
from .clock import CLOCK, Clock
from .config import ServerConfig, load_config, save_config
from .latency import LatencyProbe, LatencyReport, LatencySample
from .payload import PayloadCache, PayloadKey, Pattern, generate_payload, size_in_bytes
from .session import (
    CancelToken,
    SessionRegistry,
    SessionState,
    Sink,
    StreamSession,
)
from .stats import LatencyStats, SpeedStats, calculate_jitter, calculate_mbps, format_fixed
from .upload import MultiUploadReport, UploadMeta, UploadReport
from .warmup import PhaseSequencer
from .writer import ChunkedStreamWriter

__all__ = [
    "AdaptiveParams",
    "AdaptiveRateController",
    "CLOCK",
    "CancelToken",
    "ChunkedStreamWriter",
    "Clock",
    "LatencyProbe",
    "LatencyReport",
    "LatencySample",
    "LatencyStats",
    "MultiUploadReport",
    "Pattern",
    "PayloadCache",
    "PayloadKey",
    "PhaseSequencer",
    "ServerConfig",
    "SessionRegistry",
    "SessionState",
    "Sink",
    "SpeedStats",
    "StreamSession",
    "UploadMeta",
    "UploadReport",
    "calculate_jitter",
    "calculate_mbps",
    "format_fixed",
    "generate_payload",
    "load_config",
    "save_config",
    "size_in_bytes",
]
