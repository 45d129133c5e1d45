"""
HTTP layer.

Thin ``aiohttp.web`` plumbing around the streaming core: parameter parsing
and validation, response headers, CORS, structured errors, and the
lifecycle of the shared payload cache.  Each streaming request runs as one
session inside its own handler task.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web

from ui.output import (
    adaptive_headers,
    download_headers,
    error_json,
    info_json,
    latency_json,
    ping_json,
    warmup_headers,
)

from .adaptive import AdaptiveParams, AdaptiveRateController
from .clock import CLOCK, Clock
from .config import ServerConfig
from .constants import (
    BYTES_PER_MB,
    DEFAULT_CONNECTIONS,
    EXPOSED_HEADERS,
    KEEPALIVE_TIMEOUT,
    MAX_DOWNLOAD_MB,
    MIN_DOWNLOAD_MB,
    UPLOAD_FIELD,
)
from .info import ServerInfo, runtime_info
from .latency import LatencyProbe, clamp_count, clamp_interval
from .payload import PayloadCache, Pattern
from .session import SessionRegistry, StreamSession
from .upload import UploadMeta, measure_multi_upload, measure_upload
from .warmup import PhaseSequencer
from .writer import ChunkedStreamWriter
from .wsping import PingServer

logger = logging.getLogger(__name__)

CONFIG = web.AppKey("config", ServerConfig)
SERVER_INFO = web.AppKey("server_info", ServerInfo)
CLOCK_KEY = web.AppKey("clock", Clock)
PAYLOAD_CACHE = web.AppKey("payload_cache", PayloadCache)
SESSIONS = web.AppKey("sessions", SessionRegistry)
PING_SERVER = web.AppKey("ping_server", PingServer)

_STREAMING = "streaming"


class ValidationError(ValueError):
    """Bad client input, reported as 400 before any bytes are streamed."""


# ---------------------------------------------------------------------------
# Parameter parsing
# ---------------------------------------------------------------------------

def parse_download_size(raw: Any) -> float:
    """Size in MB for a fixed download; must lie in ``[0.1, 10]``."""
    message = f"Invalid size. Must be between {MIN_DOWNLOAD_MB:g} and {MAX_DOWNLOAD_MB:g} MB"
    try:
        size = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(message) from None
    if math.isnan(size) or not MIN_DOWNLOAD_MB <= size <= MAX_DOWNLOAD_MB:
        raise ValidationError(message)
    return size


def parse_connections(raw: Any) -> int:
    try:
        return int(raw) or DEFAULT_CONNECTIONS
    except (TypeError, ValueError):
        return DEFAULT_CONNECTIONS


def _int_or(raw: Any, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _float_or(raw: Any, default: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) and value else default


# ---------------------------------------------------------------------------
# Sink adapter
# ---------------------------------------------------------------------------

class ResponseSink:
    """
    Adapts a prepared ``web.StreamResponse`` to the session sink contract.

    ``StreamResponse.write`` drains the transport when its buffer is over
    the high-water mark, which is the backpressure suspension.
    """

    def __init__(self, request: web.Request, response: web.StreamResponse) -> None:
        self._request = request
        self._response = response

    async def write(self, data: bytes) -> None:
        transport = self._request.transport
        if transport is None or transport.is_closing():
            raise ConnectionResetError("client disconnected")
        await self._response.write(data)

    async def close(self) -> None:
        await self._response.write_eof()

    def abort(self) -> None:
        self._response.force_close()
        transport = self._request.transport
        if transport is not None:
            transport.close()


async def _stream(
    request: web.Request,
    headers: Dict[str, str],
    session: StreamSession,
    run: Callable[[ResponseSink], Awaitable[StreamSession]],
) -> web.StreamResponse:
    """Prepare a streaming response and run *session* to its end."""
    response = web.StreamResponse(headers=headers)
    await response.prepare(request)
    request[_STREAMING] = True

    registry = request.app[SESSIONS]
    registry.add(session)
    try:
        await run(ResponseSink(request, response))
    finally:
        registry.discard(session)
    return response


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def handle_ping(request: web.Request) -> web.Response:
    server_time = request.app[CLOCK_KEY].wall()
    return web.json_response(
        ping_json(
            client_time=_float_or(request.query.get("t"), server_time),
            server_time=server_time,
            sequence=_int_or(request.query.get("seq"), 0),
            server_name=request.app[SERVER_INFO].name,
        )
    )


async def handle_info(request: web.Request) -> web.Response:
    app = request.app
    return web.json_response(
        info_json(
            app[SERVER_INFO],
            timestamp=app[CLOCK_KEY].wall(),
            runtime=runtime_info(),
            cache=app[PAYLOAD_CACHE].stats().to_dict(),
            active_sessions=len(app[SESSIONS]),
        )
    )


async def handle_latency(request: web.Request) -> web.Response:
    probe = LatencyProbe(request.app[CLOCK_KEY])
    report = await probe.run(
        count=clamp_count(request.query.get("count")),
        interval_ms=clamp_interval(request.query.get("interval")),
    )
    return web.json_response(latency_json(report, request.app[SERVER_INFO].name))


async def handle_warmup(request: web.Request) -> web.StreamResponse:
    app = request.app
    sequencer = PhaseSequencer(
        app[PAYLOAD_CACHE],
        writer=ChunkedStreamWriter(app[CONFIG].chunk_size),
    )
    session = sequencer.new_session()
    headers = warmup_headers(app[CLOCK_KEY].to_wall(session.started_at))

    return await _stream(request, headers, session, lambda sink: sequencer.run(sink, session))


async def handle_download(request: web.Request) -> web.StreamResponse:
    app = request.app
    size = parse_download_size(request.match_info["size"])
    pattern = Pattern.parse(request.query.get("pattern", Pattern.RANDOM))
    connections = parse_connections(request.query.get("connections"))

    buffer = app[PAYLOAD_CACHE].get(size, pattern)
    writer = ChunkedStreamWriter(app[CONFIG].chunk_size)
    session = StreamSession(
        kind="download",
        pattern=pattern.value,
        chunk_size=writer.chunk_size,
        target_bytes=len(buffer),
        clock=app[CLOCK_KEY],
    )
    headers = download_headers(
        size_mb=size,
        pattern=pattern.value,
        connections=connections,
        length=len(buffer),
        start_time=app[CLOCK_KEY].to_wall(session.started_at),
    )

    return await _stream(request, headers, session, lambda sink: writer.stream(buffer, sink, session))


async def handle_download_adaptive(request: web.Request) -> web.StreamResponse:
    app = request.app
    query = request.query
    params = AdaptiveParams.clamp(
        initial=query.get("initial"),
        maximum=query.get("max"),
        duration=query.get("duration"),
        pattern=query.get("pattern"),
        throttle=query.get("throttle"),
    )
    controller = AdaptiveRateController(
        app[PAYLOAD_CACHE],
        writer=ChunkedStreamWriter(app[CONFIG].chunk_size),
        clock=app[CLOCK_KEY],
    )
    session = controller.new_session(params)
    headers = adaptive_headers(params, app[CLOCK_KEY].to_wall(session.started_at))

    return await _stream(request, headers, session, lambda sink: controller.run(params, sink, session))


async def read_upload_body(request: web.Request) -> bytes:
    """Raw ``application/octet-stream`` body or the multipart ``file`` field."""
    if request.content_type.startswith("multipart/"):
        form = await request.post()
        field = form.get(UPLOAD_FIELD)
        if isinstance(field, web.FileField):
            return field.file.read()
        if isinstance(field, (bytes, bytearray)):
            return bytes(field)
        return b""
    if request.content_type == "application/octet-stream":
        return await request.read()
    return b""


async def handle_upload(request: web.Request) -> web.Response:
    clock = request.app[CLOCK_KEY]
    receive_start = clock.wall()
    meta = UploadMeta.from_headers(request.headers)

    data = await read_upload_body(request)
    if not data:
        raise ValidationError("No data received")

    report = measure_upload(data, meta, receive_start, clock.wall())
    logger.debug("Upload of %d bytes at %.3f Mbps", report.size, report.speed_mbps)
    return web.json_response(report.to_dict(request.app[SERVER_INFO].name))


async def handle_upload_multi(request: web.Request) -> web.Response:
    clock = request.app[CLOCK_KEY]
    meta = UploadMeta.from_headers(request.headers)

    data = await read_upload_body(request)
    if not data:
        raise ValidationError("No data received")
    receive_time = clock.wall()

    report = measure_multi_upload(len(data), meta, receive_time, clock.wall())
    return web.json_response(report.to_dict(request.app[SERVER_INFO].name))


# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------

def _origin_allowed(origin: str, allowed) -> bool:  # noqa: ANN001
    return "*" in allowed or origin in allowed


@web.middleware
async def cors_middleware(request: web.Request, handler):  # noqa: ANN001
    """Answer CORS preflight requests; actual headers are added on prepare."""
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        return web.Response(status=204)
    return await handler(request)


async def _apply_cors(request: web.Request, response: web.StreamResponse) -> None:
    origin = request.headers.get("Origin")
    if not origin or not _origin_allowed(origin, request.app[CONFIG].allowed_origins):
        return
    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Credentials"] = "true"
    response.headers["Access-Control-Expose-Headers"] = ", ".join(EXPOSED_HEADERS)
    response.headers["Vary"] = "Origin"
    if request.method == "OPTIONS":
        response.headers["Access-Control-Allow-Methods"] = "GET, POST"
        requested = request.headers.get("Access-Control-Request-Headers")
        if requested:
            response.headers["Access-Control-Allow-Headers"] = requested


@web.middleware
async def error_middleware(request: web.Request, handler):  # noqa: ANN001
    """Render failures as ``{"error": ...}`` bodies."""
    clock = request.app[CLOCK_KEY]
    try:
        return await handler(request)
    except ValidationError as exc:
        return web.json_response(error_json(str(exc)), status=400)
    except web.HTTPNotFound:
        return web.json_response(
            error_json("Endpoint not found", path=request.path, timestamp=clock.wall()),
            status=404,
        )
    except web.HTTPRequestEntityTooLarge as exc:
        return web.json_response(error_json("Payload too large", details=exc.text), status=413)
    except web.HTTPException:
        raise
    except Exception as exc:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        if request.get(_STREAMING):
            raise
        return web.json_response(
            error_json("Internal server error", message=str(exc), timestamp=clock.wall()),
            status=500,
        )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def _prewarm_cache(app: web.Application) -> None:
    config = app[CONFIG]
    if not config.prewarm_sizes:
        return
    loop = asyncio.get_running_loop()
    entries = await loop.run_in_executor(None, app[PAYLOAD_CACHE].prewarm, config.prewarm_sizes)
    logger.info("Payload cache pre-warmed with %d buffers", entries)


async def _cancel_sessions(app: web.Application) -> None:
    cancelled = app[SESSIONS].cancel_all()
    if cancelled:
        logger.info("Cancelled %d in-flight sessions", cancelled)


async def _clear_cache(app: web.Application) -> None:
    app[PAYLOAD_CACHE].clear()


async def _ping_server_ctx(app: web.Application):  # noqa: ANN201
    config = app[CONFIG]
    server = app[PING_SERVER]
    await server.start(config.host, config.ws_port)
    yield
    await server.close()


def create_app(
    config: Optional[ServerConfig] = None,
    clock: Clock = CLOCK,
    cache: Optional[PayloadCache] = None,
) -> web.Application:
    config = config or ServerConfig()
    app = web.Application(
        client_max_size=config.max_upload_mb * BYTES_PER_MB,
        middlewares=[cors_middleware, error_middleware],
    )
    app[CONFIG] = config
    app[CLOCK_KEY] = clock
    app[SERVER_INFO] = ServerInfo.from_host(config.server_name, config.location)
    app[PAYLOAD_CACHE] = cache if cache is not None else PayloadCache(config.cache_max_entries, config.cache_max_mb)
    app[SESSIONS] = SessionRegistry()

    app.router.add_get("/api/ping", handle_ping)
    app.router.add_get("/api/info", handle_info)
    app.router.add_get("/api/latency-advanced", handle_latency)
    app.router.add_get("/api/warmup-advanced", handle_warmup)
    app.router.add_get("/api/download-adaptive", handle_download_adaptive)
    app.router.add_get("/api/download/{size}", handle_download)
    app.router.add_post("/api/upload", handle_upload)
    app.router.add_post("/api/upload-multi", handle_upload_multi)

    app.on_response_prepare.append(_apply_cors)
    app.on_startup.append(_prewarm_cache)
    app.on_shutdown.append(_cancel_sessions)
    app.on_cleanup.append(_clear_cache)
    if config.ws_port:
        app[PING_SERVER] = PingServer(config.server_name, clock)
        app.cleanup_ctx.append(_ping_server_ctx)
    return app


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class ProcessFault(RuntimeError):
    """An exception escaped into the event loop; the process must stop."""


async def serve(config: ServerConfig, app: Optional[web.Application] = None) -> None:
    """
    Run the server until cancelled or until a process-level fault occurs.

    Faults reported to the loop's exception handler are logged and then
    raised from here as :class:`ProcessFault` so the caller can exit.
    """
    loop = asyncio.get_running_loop()
    fatal: asyncio.Future = loop.create_future()

    def _on_fault(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        message = context.get("message", "unhandled error")
        logger.critical("Process fault: %s", message, exc_info=context.get("exception"))
        if not fatal.done():
            fatal.set_exception(ProcessFault(message))

    loop.set_exception_handler(_on_fault)

    app = app or create_app(config)
    runner = web.AppRunner(
        app,
        handler_cancellation=True,
        keepalive_timeout=KEEPALIVE_TIMEOUT,
    )
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    logger.info("Listening on http://%s:%d", config.host, config.port)

    try:
        await fatal
    finally:
        await runner.cleanup()
        loop.set_exception_handler(None)
