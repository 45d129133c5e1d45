"""
Stream sessions, cancellation, and the sink contract.

Every streaming transfer is one :class:`StreamSession` driven by one task.
A session starts ``ACTIVE`` and reaches exactly one terminal state::

    ACTIVE -> COMPLETED | CANCELLED | FAILED

The first :meth:`StreamSession.finish` wins; any later call is a no-op.
Cancellation from any source (client disconnect, sink error, handler
cancellation, server shutdown) goes through the session's
:class:`CancelToken`, which every suspension point observes.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

from .clock import CLOCK, Clock
from .stats import SpeedStats

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------

class Sink(Protocol):
    """
    Abstract output consumer.

    ``write`` resolves once the sink has accepted *data*; while the sink is
    applying backpressure it stays suspended until the sink has drained.
    Writing to a sink whose consumer has gone away raises
    ``ConnectionError``.
    """

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...

    def abort(self) -> None: ...


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancelToken:
    """One-shot cancellation signal shared by every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Trip the token.  Returns ``False`` if it was already tripped."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        """Suspend until the token is tripped."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep for *seconds* unless cancelled first.

        Returns ``True`` if the full delay elapsed, ``False`` on cancellation.
        """
        if self._event.is_set():
            return False
        if seconds <= 0:
            await asyncio.sleep(0)
            return not self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return True


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class SessionState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(eq=False)
class StreamSession:
    """Mutable state of one in-flight transfer."""

    kind: str
    pattern: str = "random"
    chunk_size: int = 0
    target_bytes: Optional[int] = None
    throttle: Optional[float] = None
    clock: Clock = field(default=CLOCK, repr=False)
    id: int = field(default_factory=lambda: next(_session_ids))
    started_at: float = 0.0
    ended_at: Optional[float] = None
    offset: int = 0
    chunks: int = 0
    state: SessionState = SessionState.ACTIVE
    error: Optional[BaseException] = None
    token: CancelToken = field(default_factory=CancelToken, repr=False)

    def __post_init__(self) -> None:
        if not self.started_at:
            self.started_at = self.clock.now()

    # -- Progress -----------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self.state is not SessionState.ACTIVE

    @property
    def elapsed_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else self.clock.now()
        return end - self.started_at

    def advance(self, n: int) -> None:
        """Move the cursor forward by *n* bytes."""
        if n < 0:
            raise ValueError("Session offset cannot move backwards")
        if self.target_bytes is not None and self.offset + n > self.target_bytes:
            raise ValueError(
                f"Session {self.id} would exceed its target "
                f"({self.offset + n} > {self.target_bytes})"
            )
        self.offset += n
        self.chunks += 1

    # -- Termination --------------------------------------------------------

    def finish(self, state: SessionState, error: Optional[BaseException] = None) -> bool:
        """Move to terminal *state*.  Only the first call has any effect."""
        if state is SessionState.ACTIVE:
            raise ValueError("finish() needs a terminal state")
        if self.finished:
            return False

        self.state = state
        self.error = error
        self.ended_at = self.clock.now()
        self.token.cancel(state.value)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "pattern": self.pattern,
            "state": self.state.value,
            "bytes": self.offset,
            "target_bytes": self.target_bytes,
            "chunks": self.chunks,
            "elapsed_ms": round(self.elapsed_ms, 3),
        }


# ---------------------------------------------------------------------------
# Driving a session
# ---------------------------------------------------------------------------

class SessionCancelled(Exception):
    """Raised inside a session body when its token has been tripped."""


async def send(session: StreamSession, sink: Sink, data) -> None:  # noqa: ANN001
    """
    Write one chunk, racing the write against the session token.

    A write held up by backpressure is abandoned as soon as the token is
    tripped, so a stalled consumer cannot keep a cancelled session alive.
    """
    token = session.token
    if token.cancelled:
        raise SessionCancelled(token.reason)

    write = asyncio.ensure_future(sink.write(data))
    tripped = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({write, tripped}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (write, tripped):
            if not task.done():
                task.cancel()

    if write not in done:
        raise SessionCancelled(token.reason)
    write.result()
    session.advance(len(data))


async def drive(
    session: StreamSession,
    sink: Sink,
    body: Callable[[], Awaitable[None]],
) -> StreamSession:
    """
    Run *body* as the session's single worker and settle its terminal state.

    Normal return closes the sink and completes the session.  Disconnects
    and token cancellation end it as ``CANCELLED``; any other error ends it
    as ``FAILED`` and is logged, never re-raised, because the response
    status has already been sent.  Task cancellation is recorded and then
    propagated.
    """
    try:
        await body()
        if session.token.cancelled:
            raise SessionCancelled(session.token.reason)
        await sink.close()
    except asyncio.CancelledError:
        if session.finish(SessionState.CANCELLED):
            logger.debug("%s session %d cancelled by task", session.kind, session.id)
        raise
    except SessionCancelled as exc:
        if session.finish(SessionState.CANCELLED):
            logger.debug("%s session %d cancelled: %s", session.kind, session.id, exc)
        # No completion signal: the consumer sees the stream cut short.
        sink.abort()
    except ConnectionError as exc:
        session.token.cancel("client disconnected")
        if session.finish(SessionState.CANCELLED, exc):
            logger.debug("%s session %d: client disconnected", session.kind, session.id)
    except Exception as exc:
        if session.finish(SessionState.FAILED, exc):
            logger.exception("%s session %d failed", session.kind, session.id)
        sink.abort()
    else:
        if session.finish(SessionState.COMPLETED):
            speed = SpeedStats(session.offset, session.elapsed_ms)
            speed.calculate()
            logger.info(
                "%s session %d completed: %d bytes in %.1f ms (%.3f Mbps)",
                session.kind, session.id, session.offset, session.elapsed_ms, speed.speed_mbps,
            )
    return session


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class SessionRegistry:
    """Live sessions, so shutdown can cancel every in-flight transfer."""

    def __init__(self) -> None:
        self._sessions: Set[StreamSession] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: StreamSession) -> None:
        self._sessions.add(session)

    def discard(self, session: StreamSession) -> None:
        self._sessions.discard(session)

    def cancel_all(self, reason: str = "server shutdown") -> int:
        count = 0
        for session in list(self._sessions):
            if session.token.cancel(reason):
                count += 1
        return count
