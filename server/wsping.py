"""
WebSocket latency responder speaking the Ookla-style text protocol.

Protocol flow::

    1. Client connects to  ws://{host}:{ws_port}/ws
    2. Send     HELLO {version} ({name})
    3. Send     YOURIP {ip}
    4. Send     CAPABILITIES SERVER_HOST_AUTH UPLOAD_STATS
    5. Receive  PING {anything}
    6. Send     PONG {server_epoch_ms}
    7. Repeat 5-6 until the client sends QUIT or disconnects.

``HI`` is answered with another ``HELLO``; anything else gets
``ERROR unknown command``.
"""
from __future__ import annotations

import logging
from typing import Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .clock import CLOCK, Clock
from .constants import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

CAPABILITIES = "CAPABILITIES SERVER_HOST_AUTH UPLOAD_STATS"


def respond(message: str, clock: Clock = CLOCK, name: str = "") -> Optional[str]:
    """Reply for one client *message*; ``None`` means close the connection."""
    parts = message.strip().split()
    command = parts[0].upper() if parts else ""

    if command == "PING":
        return f"PONG {int(clock.wall())}"
    if command == "HI":
        return hello_line(name)
    if command == "QUIT":
        return None
    return "ERROR unknown command"


def hello_line(name: str) -> str:
    return f"HELLO {PROTOCOL_VERSION} ({name})" if name else f"HELLO {PROTOCOL_VERSION}"


class PingServer:
    """Owns the ``websockets`` server for the lifetime of the app."""

    def __init__(self, name: str, clock: Clock = CLOCK) -> None:
        self.name = name
        self.clock = clock
        self._server: Optional[Server] = None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Ping server is not running")
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        raise RuntimeError("Ping server has no listening socket")

    async def start(self, host: str, port: int) -> PingServer:
        self._server = await serve(self._handle, host, port, ping_interval=None)
        logger.info("WebSocket ping responder listening on %s:%d", host, self.port)
        return self

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle(self, ws: ServerConnection) -> None:
        peer = ws.remote_address[0] if ws.remote_address else "unknown"
        try:
            await ws.send(hello_line(self.name))
            await ws.send(f"YOURIP {peer}")
            await ws.send(CAPABILITIES)

            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                reply = respond(message, self.clock, self.name)
                if reply is None:
                    await ws.close()
                    return
                await ws.send(reply)
        except ConnectionClosed:
            logger.debug("Ping client %s disconnected", peer)
