"""
Chunked stream writer.

Delivers an already-materialised buffer to a sink in bounded slices.  At
most one slice is in flight: each write is awaited (the sink suspends
while it drains) before the cursor moves, so chunks go out in strictly
increasing offset order with no gaps or overlaps.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from .constants import CHUNK_SIZE, YIELD_EVERY
from .session import Sink, StreamSession, drive, send


class ChunkedStreamWriter:
    """Fixed-size download driver."""

    def __init__(self, chunk_size: int = CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("Chunk size must be positive")
        self.chunk_size = chunk_size

    async def pump(
        self,
        buffer: bytes,
        sink: Sink,
        session: StreamSession,
        stop_at: Optional[float] = None,
    ) -> int:
        """
        Write *buffer* to *sink* without ending the session.

        Returns the number of bytes written.  Stops early (raising through
        :func:`send`) as soon as the session's token is tripped, and stops
        quietly before any slice that would start at or after *stop_at*
        (a ``session.clock.now()`` value).
        """
        view = memoryview(buffer)
        length = len(view)
        cursor = 0
        since_yield = 0

        while cursor < length:
            if stop_at is not None and session.clock.now() >= stop_at:
                break
            end = min(cursor + self.chunk_size, length)
            await send(session, sink, view[cursor:end])
            written = end - cursor
            cursor = end

            since_yield += written
            if since_yield >= YIELD_EVERY:
                since_yield = 0
                await asyncio.sleep(0)

        return cursor

    async def stream(
        self,
        buffer: bytes,
        sink: Sink,
        session: Optional[StreamSession] = None,
        pattern: str = "random",
    ) -> StreamSession:
        """Stream *buffer* to completion, cancellation, or failure."""
        if session is None:
            session = StreamSession(
                kind="download",
                pattern=pattern,
                chunk_size=self.chunk_size,
                target_bytes=len(buffer),
            )

        async def _body() -> None:
            await self.pump(buffer, sink, session)

        return await drive(session, sink, _body)
