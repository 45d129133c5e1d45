"""
Server configuration.

Settings are layered: built-in defaults, then ``~/.speedtest-server/config.json``
(or an explicit path), then environment variables.  The result is frozen
into a :class:`ServerConfig` once at startup and handed to the app.

Supported keys::

    host = "0.0.0.0"
    port = 3001
    ws_port = 0                # 0 disables the WebSocket ping responder
    server_name = "Speed Test Server"
    location = "Local"
    allowed_origins = ["http://localhost:3000"]
    max_upload_mb = 500
    chunk_size = 65536
    cache_max_entries = 64
    cache_max_mb = 256.0
    prewarm_sizes = [0.1, 0.5, 1, 2, 5, 10]
    log_level = "INFO"
"""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .constants import (
    CACHE_MAX_ENTRIES,
    CACHE_MAX_MB,
    CHUNK_SIZE,
    DEFAULT_ALLOWED_ORIGINS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_WS_PORT,
    MAX_UPLOAD_MB,
    PREWARM_SIZES,
    SERVER_LOCATION,
    SERVER_NAME,
)

_CONFIG_DIR = os.path.join(Path.home(), ".speedtest-server")
_CONFIG_FILE = "config.json"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Environment variable -> config key
_ENV_KEYS = {
    "HOST": "host",
    "PORT": "port",
    "SPEEDTEST_WS_PORT": "ws_port",
    "SPEEDTEST_SERVER_NAME": "server_name",
    "SPEEDTEST_LOCATION": "location",
    "SPEEDTEST_ALLOWED_ORIGINS": "allowed_origins",
    "SPEEDTEST_LOG_LEVEL": "log_level",
}


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "host": DEFAULT_HOST,
    "port": DEFAULT_PORT,
    "ws_port": DEFAULT_WS_PORT,
    "server_name": SERVER_NAME,
    "location": SERVER_LOCATION,
    "allowed_origins": list(DEFAULT_ALLOWED_ORIGINS),
    "max_upload_mb": MAX_UPLOAD_MB,
    "chunk_size": CHUNK_SIZE,
    "cache_max_entries": CACHE_MAX_ENTRIES,
    "cache_max_mb": CACHE_MAX_MB,
    "prewarm_sizes": list(PREWARM_SIZES),
    "log_level": "INFO",
}


# ---------------------------------------------------------------------------
# Immutable config object
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    """Startup configuration, constructed once and passed to the app."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    ws_port: int = DEFAULT_WS_PORT
    server_name: str = SERVER_NAME
    location: str = SERVER_LOCATION
    allowed_origins: Tuple[str, ...] = DEFAULT_ALLOWED_ORIGINS
    max_upload_mb: int = MAX_UPLOAD_MB
    chunk_size: int = CHUNK_SIZE
    cache_max_entries: int = CACHE_MAX_ENTRIES
    cache_max_mb: float = CACHE_MAX_MB
    prewarm_sizes: Tuple[float, ...] = field(default=PREWARM_SIZES)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ServerConfig:
        origins = data.get("allowed_origins", DEFAULTS["allowed_origins"])
        if isinstance(origins, str):
            origins = [o.strip() for o in origins.split(",") if o.strip()]

        return cls(
            host=str(data.get("host", DEFAULT_HOST)),
            port=int(data.get("port", DEFAULT_PORT)),
            ws_port=int(data.get("ws_port", DEFAULT_WS_PORT)),
            server_name=str(data.get("server_name", SERVER_NAME)),
            location=str(data.get("location", SERVER_LOCATION)),
            allowed_origins=tuple(origins),
            max_upload_mb=int(data.get("max_upload_mb", MAX_UPLOAD_MB)),
            chunk_size=int(data.get("chunk_size", CHUNK_SIZE)),
            cache_max_entries=int(data.get("cache_max_entries", CACHE_MAX_ENTRIES)),
            cache_max_mb=float(data.get("cache_max_mb", CACHE_MAX_MB)),
            prewarm_sizes=tuple(float(s) for s in data.get("prewarm_sizes", PREWARM_SIZES)),
            log_level=str(data.get("log_level", "INFO")).upper(),
        )

    def with_overrides(self, **overrides: Any) -> ServerConfig:
        """Return a copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def validate(self) -> None:
        """Raise ``ValueError`` if any setting is out of range."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Port must be between 0 and 65535, got {self.port}")
        if not 0 <= self.ws_port <= 65535:
            raise ValueError(f"WebSocket port must be between 0 and 65535, got {self.ws_port}")
        if self.ws_port and self.ws_port == self.port:
            raise ValueError("WebSocket port must differ from the HTTP port")
        if self.max_upload_mb <= 0:
            raise ValueError("Upload limit must be positive")
        if self.chunk_size <= 0:
            raise ValueError("Chunk size must be positive")
        if self.cache_max_entries < 1 or self.cache_max_mb <= 0:
            raise ValueError("Payload cache limits must be positive")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(_LOG_LEVELS)}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["allowed_origins"] = list(self.allowed_origins)
        data["prewarm_sizes"] = list(self.prewarm_sizes)
        return data


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Merge defaults, the JSON file at *path* and *environ* into a config."""
    path = path or _config_path()
    environ = os.environ if environ is None else environ
    merged = dict(DEFAULTS)

    if os.path.isfile(path):
        try:
            with open(path, encoding="utf-8") as fh:
                user = json.load(fh)
            if isinstance(user, dict):
                merged.update(user)
        except (json.JSONDecodeError, IOError):
            pass  # corrupt file; use defaults

    for env_key, key in _ENV_KEYS.items():
        value = environ.get(env_key)
        if value:
            merged[key] = value

    return ServerConfig.from_dict(merged)


def save_config(config: ServerConfig, path: Optional[str] = None) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = path or _config_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config.to_dict(), fh, indent=2, ensure_ascii=False)

    return path


def config_path() -> str:
    """Return the default config file path (for display purposes)."""
    return _config_path()
