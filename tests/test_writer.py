"""Tests for server.writer -- chunked delivery, cancellation, backpressure."""

import asyncio
import unittest

from server.payload import Pattern, generate_payload
from server.session import SessionState, StreamSession
from server.writer import ChunkedStreamWriter


class RecordingSink:
    """Collects writes; optionally disconnects after *fail_after* bytes."""

    def __init__(self, fail_after=None, error=ConnectionResetError):
        self.chunks = []
        self.offsets = []
        self.received = 0
        self.fail_after = fail_after
        self.error = error
        self.closed = False
        self.aborted = False

    async def write(self, data):
        if self.fail_after is not None and self.received >= self.fail_after:
            raise self.error("sink gone")
        self.offsets.append(self.received)
        self.chunks.append(bytes(data))
        self.received += len(data)

    async def close(self):
        self.closed = True

    def abort(self):
        self.aborted = True


class GatedSink(RecordingSink):
    """Every write suspends until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.pending = 0

    async def write(self, data):
        self.pending += 1
        await self.gate.wait()
        self.pending -= 1
        await super().write(data)


class StalledSink(RecordingSink):
    """A consumer that stops reading: writes never return."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def write(self, data):
        self.started.set()
        await asyncio.Event().wait()


class TestChunkedStreamWriter(unittest.IsolatedAsyncioTestCase):
    async def test_delivers_every_byte_in_order(self):
        buf = generate_payload(1_000_000, Pattern.INCOMPRESSIBLE)
        sink = RecordingSink()
        session = await ChunkedStreamWriter(65536).stream(buf, sink)

        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertEqual(b"".join(sink.chunks), buf)
        self.assertEqual(session.offset, len(buf))
        self.assertTrue(sink.closed)

    async def test_chunk_sizes_and_offsets(self):
        buf = generate_payload(200_000, Pattern.COMPRESSIBLE)
        sink = RecordingSink()
        await ChunkedStreamWriter(65536).stream(buf, sink)

        self.assertEqual([len(c) for c in sink.chunks], [65536, 65536, 65536, 3392])
        self.assertEqual(sink.offsets, [0, 65536, 131072, 196608])

    async def test_small_buffer_is_single_chunk(self):
        sink = RecordingSink()
        session = await ChunkedStreamWriter(65536).stream(b"hello", sink)
        self.assertEqual(sink.chunks, [b"hello"])
        self.assertEqual(session.chunks, 1)

    async def test_empty_buffer_completes(self):
        sink = RecordingSink()
        session = await ChunkedStreamWriter().stream(b"", sink)
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertEqual(sink.chunks, [])

    async def test_disconnect_midway_cancels(self):
        buf = generate_payload(10 * 1024 * 1024, Pattern.COMPRESSIBLE)
        sink = RecordingSink(fail_after=len(buf) // 2)
        session = await ChunkedStreamWriter(65536).stream(buf, sink)

        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertEqual(sink.received, len(buf) // 2)
        self.assertFalse(sink.closed)
        self.assertFalse(sink.aborted)

    async def test_unexpected_error_fails(self):
        sink = RecordingSink(fail_after=0, error=RuntimeError)
        with self.assertLogs("server.session", level="ERROR"):
            session = await ChunkedStreamWriter().stream(b"x" * 100, sink)
        self.assertEqual(session.state, SessionState.FAILED)
        self.assertTrue(sink.aborted)

    async def test_backpressure_holds_the_cursor(self):
        buf = generate_payload(4 * 65536, Pattern.COMPRESSIBLE)
        sink = GatedSink()
        session = StreamSession(kind="download", target_bytes=len(buf))
        task = asyncio.ensure_future(ChunkedStreamWriter(65536).stream(buf, sink, session))

        await asyncio.sleep(0.05)
        # One write outstanding and nothing has advanced past it
        self.assertEqual(sink.pending, 1)
        self.assertEqual(session.offset, 0)

        sink.gate.set()
        await task
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertEqual(session.offset, len(buf))

    async def test_token_cancel_stops_stream(self):
        buf = generate_payload(4 * 65536, Pattern.COMPRESSIBLE)
        sink = GatedSink()
        session = StreamSession(kind="download", target_bytes=len(buf))
        task = asyncio.ensure_future(ChunkedStreamWriter(65536).stream(buf, sink, session))

        await asyncio.sleep(0.01)
        session.token.cancel("shutdown")
        sink.gate.set()
        await task
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertLess(session.offset, len(buf))

    async def test_cancel_ends_stream_stuck_on_stalled_consumer(self):
        buf = generate_payload(4 * 65536, Pattern.COMPRESSIBLE)
        sink = StalledSink()
        session = StreamSession(kind="download", target_bytes=len(buf))
        task = asyncio.ensure_future(ChunkedStreamWriter(65536).stream(buf, sink, session))

        await asyncio.wait_for(sink.started.wait(), timeout=1.0)
        session.token.cancel("server shutdown")
        done, _ = await asyncio.wait({task}, timeout=1.0)

        self.assertIn(task, done)
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertEqual(session.offset, 0)
        self.assertTrue(sink.aborted)
        self.assertFalse(sink.closed)

    async def test_pump_stop_at(self):
        buf = generate_payload(4 * 65536, Pattern.COMPRESSIBLE)
        sink = RecordingSink()
        session = StreamSession(kind="adaptive")
        written = await ChunkedStreamWriter(65536).pump(buf, sink, session, stop_at=session.clock.now() - 1)
        self.assertEqual(written, 0)
        self.assertEqual(sink.chunks, [])

    def test_invalid_chunk_size(self):
        with self.assertRaises(ValueError):
            ChunkedStreamWriter(0)


if __name__ == "__main__":
    unittest.main()
