"""Connection warmup: a fixed, ordered series of payload bursts."""
from __future__ import annotations

from typing import Callable, Optional, Sequence, Tuple

from .constants import WARMUP_PATTERN, WARMUP_PHASES
from .payload import PayloadCache
from .session import Sink, StreamSession, drive
from .writer import ChunkedStreamWriter


class PhaseSequencer:
    """
    Emit each ``(size_mb, delay_ms)`` phase in order.

    A phase is written in full before its delay starts; the session ends
    once the last phase's delay has elapsed.  ``on_phase(index, size_mb)``
    fires after each phase has been written.
    """

    def __init__(
        self,
        cache: PayloadCache,
        phases: Sequence[Tuple[float, float]] = WARMUP_PHASES,
        pattern: str = WARMUP_PATTERN,
        writer: Optional[ChunkedStreamWriter] = None,
    ) -> None:
        self.cache = cache
        self.phases = tuple(phases)
        self.pattern = pattern
        self.writer = writer or ChunkedStreamWriter()
        self.on_phase: Optional[Callable[[int, float], None]] = None

    async def run(self, sink: Sink, session: Optional[StreamSession] = None) -> StreamSession:
        if session is None:
            session = self.new_session()

        async def _body() -> None:
            for index, (size_mb, delay_ms) in enumerate(self.phases):
                payload = self.cache.get(size_mb, self.pattern)
                await self.writer.pump(payload, sink, session)
                if self.on_phase:
                    self.on_phase(index, size_mb)
                if not await session.token.sleep(delay_ms / 1000):
                    return

        return await drive(session, sink, _body)

    def new_session(self) -> StreamSession:
        return StreamSession(
            kind="warmup",
            pattern=self.pattern,
            chunk_size=self.writer.chunk_size,
        )
