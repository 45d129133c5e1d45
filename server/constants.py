"""
Shared constants used across all server modules.

Centralises limits, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

SERVER_NAME = "Speed Test Server"
SERVER_LOCATION = "Local"
PROTOCOL_VERSION = "2.11"

# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3001
DEFAULT_WS_PORT = 0              # 0 disables the WebSocket ping responder

KEEPALIVE_TIMEOUT = 120.0        # seconds

DEFAULT_ALLOWED_ORIGINS = (
    "http://localhost:3000",
)

# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

BYTES_PER_MB = 1024 * 1024

COMPRESSIBLE_BYTE = 0x41
INCOMPRESSIBLE_MULTIPLIER = 137
INCOMPRESSIBLE_OFFSET = 19

CACHE_MAX_ENTRIES = 64
CACHE_MAX_MB = 256.0

PREWARM_SIZES = (0.1, 0.5, 1.0, 2.0, 5.0, 10.0)
PREWARM_PATTERNS = ("random", "compressible")

# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

CHUNK_SIZE = 64 * 1024           # 64 KB per write
YIELD_EVERY = 256 * 1024         # yield to the loop every 256 KB

# ---------------------------------------------------------------------------
# Fixed-size download
# ---------------------------------------------------------------------------

MIN_DOWNLOAD_MB = 0.1
MAX_DOWNLOAD_MB = 10.0
DEFAULT_CONNECTIONS = 1

# ---------------------------------------------------------------------------
# Adaptive download
# ---------------------------------------------------------------------------

DEFAULT_ADAPTIVE_INITIAL_MB = 1.0
DEFAULT_ADAPTIVE_MAX_MB = 5.0
DEFAULT_ADAPTIVE_DURATION = 5.0  # seconds
DEFAULT_THROTTLE = 1.0

MIN_ADAPTIVE_INITIAL_MB = 0.1
MAX_ADAPTIVE_MB = 10.0
MIN_ADAPTIVE_DURATION = 0.5
MAX_ADAPTIVE_DURATION = 10.0
MIN_THROTTLE = 0.1

ADAPTIVE_CHUNK_FRACTION = 0.03   # chunk is 3% of the ramped target
MIN_ADAPTIVE_CHUNK_MB = 0.05     # ~50 KB floor
ADAPTIVE_CHUNK_GRID_MB = 0.01    # chunk sizes snap up to this grid
ADAPTIVE_BASE_DELAY_MS = 100.0
ADAPTIVE_MAX_DELAY_MS = 300.0
ADAPTIVE_DELAY_GROWTH = 10.0     # ms of extra delay per elapsed second

# ---------------------------------------------------------------------------
# Warmup
# ---------------------------------------------------------------------------

WARMUP_PHASES = (
    (0.1, 100.0),                # (size MB, delay ms)
    (0.5, 150.0),
    (1.0, 200.0),
    (2.0, 250.0),
)
WARMUP_PATTERN = "random"

# ---------------------------------------------------------------------------
# Latency probe
# ---------------------------------------------------------------------------

DEFAULT_LATENCY_COUNT = 5
MIN_LATENCY_COUNT = 1
MAX_LATENCY_COUNT = 10
DEFAULT_LATENCY_INTERVAL_MS = 50
MIN_LATENCY_INTERVAL_MS = 100

# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

MAX_UPLOAD_MB = 500
UPLOAD_FIELD = "file"
INTEGRITY_HEX_CHARS = 8

# ---------------------------------------------------------------------------
# Response headers
# ---------------------------------------------------------------------------

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

EXPOSED_HEADERS = (
    "X-Test-Start",
    "X-Test-Size",
    "X-Test-Type",
    "X-Start-Time",
    "X-Pattern",
    "X-Connections",
    "X-Initial-Size",
    "X-Max-Size",
    "X-Duration",
    "X-Throttle",
    "X-Warmup-Start",
)

DECIMALS = 3                     # fixed precision for timing / speed echoes
