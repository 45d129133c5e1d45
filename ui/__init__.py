"""UI layer -- Rich console output and HTTP response formatters."""

from .dashboard import (
    configure_logging,
    console,
    print_banner,
    print_endpoints,
)
from .output import (
    adaptive_headers,
    download_headers,
    error_json,
    info_json,
    latency_json,
    ping_json,
    warmup_headers,
)

__all__ = [
    "adaptive_headers",
    "configure_logging",
    "console",
    "download_headers",
    "error_json",
    "info_json",
    "latency_json",
    "ping_json",
    "print_banner",
    "print_endpoints",
    "warmup_headers",
]
