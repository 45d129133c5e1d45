"""Tests for server.session -- cancel token, termination, and the registry."""

import asyncio
import unittest

from server.session import (
    CancelToken,
    SessionRegistry,
    SessionState,
    StreamSession,
    drive,
    send,
)


class RecordingSink:
    def __init__(self):
        self.chunks = []
        self.closed = False
        self.aborted = False

    async def write(self, data):
        self.chunks.append(bytes(data))

    async def close(self):
        self.closed = True

    def abort(self):
        self.aborted = True


class TestCancelToken(unittest.IsolatedAsyncioTestCase):
    async def test_cancel_once(self):
        token = CancelToken()
        self.assertFalse(token.cancelled)
        self.assertTrue(token.cancel("first"))
        self.assertFalse(token.cancel("second"))
        self.assertEqual(token.reason, "first")

    async def test_sleep_elapses(self):
        token = CancelToken()
        self.assertTrue(await token.sleep(0.01))

    async def test_sleep_interrupted(self):
        token = CancelToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.02, token.cancel)
        start = loop.time()
        self.assertFalse(await token.sleep(5))
        self.assertLess(loop.time() - start, 1.0)

    async def test_sleep_after_cancel_returns_immediately(self):
        token = CancelToken()
        token.cancel()
        self.assertFalse(await token.sleep(5))


class TestStreamSession(unittest.TestCase):
    def test_advance(self):
        session = StreamSession(kind="download", target_bytes=10)
        session.advance(4)
        session.advance(6)
        self.assertEqual(session.offset, 10)
        self.assertEqual(session.chunks, 2)

    def test_advance_past_target_rejected(self):
        session = StreamSession(kind="download", target_bytes=10)
        session.advance(8)
        with self.assertRaises(ValueError):
            session.advance(3)

    def test_advance_negative_rejected(self):
        session = StreamSession(kind="download")
        with self.assertRaises(ValueError):
            session.advance(-1)

    def test_first_finish_wins(self):
        session = StreamSession(kind="download")
        self.assertTrue(session.finish(SessionState.CANCELLED))
        self.assertFalse(session.finish(SessionState.COMPLETED))
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertTrue(session.token.cancelled)
        self.assertIsNotNone(session.ended_at)

    def test_finish_needs_terminal_state(self):
        session = StreamSession(kind="download")
        with self.assertRaises(ValueError):
            session.finish(SessionState.ACTIVE)

    def test_unique_ids(self):
        a = StreamSession(kind="download")
        b = StreamSession(kind="download")
        self.assertNotEqual(a.id, b.id)

    def test_to_dict(self):
        session = StreamSession(kind="warmup", pattern="random")
        d = session.to_dict()
        self.assertEqual(d["kind"], "warmup")
        self.assertEqual(d["state"], "active")
        self.assertEqual(d["bytes"], 0)


class TestDrive(unittest.IsolatedAsyncioTestCase):
    async def test_completed(self):
        session = StreamSession(kind="download", target_bytes=3)
        sink = RecordingSink()

        async def body():
            await send(session, sink, b"abc")

        await drive(session, sink, body)
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertTrue(sink.closed)
        self.assertFalse(sink.aborted)

    async def test_connection_error_cancels(self):
        session = StreamSession(kind="download")
        sink = RecordingSink()

        async def body():
            raise ConnectionResetError("gone")

        await drive(session, sink, body)
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertFalse(sink.closed)

    async def test_other_error_fails_and_aborts(self):
        session = StreamSession(kind="download")
        sink = RecordingSink()

        async def body():
            raise RuntimeError("boom")

        with self.assertLogs("server.session", level="ERROR"):
            await drive(session, sink, body)
        self.assertEqual(session.state, SessionState.FAILED)
        self.assertIsInstance(session.error, RuntimeError)
        self.assertTrue(sink.aborted)

    async def test_send_after_cancel_is_refused(self):
        session = StreamSession(kind="download")
        sink = RecordingSink()
        session.token.cancel("shutdown")

        async def body():
            await send(session, sink, b"x")

        await drive(session, sink, body)
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertEqual(sink.chunks, [])

    async def test_body_returning_after_cancel_is_not_completed(self):
        session = StreamSession(kind="adaptive")
        sink = RecordingSink()

        async def body():
            session.token.cancel("shutdown")

        await drive(session, sink, body)
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertFalse(sink.closed)

    async def test_task_cancellation_propagates(self):
        session = StreamSession(kind="download")
        sink = RecordingSink()

        async def body():
            await asyncio.sleep(10)

        task = asyncio.ensure_future(drive(session, sink, body))
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(session.state, SessionState.CANCELLED)


class TestSessionRegistry(unittest.TestCase):
    def test_cancel_all(self):
        registry = SessionRegistry()
        a = StreamSession(kind="download")
        b = StreamSession(kind="warmup")
        registry.add(a)
        registry.add(b)
        self.assertEqual(len(registry), 2)

        self.assertEqual(registry.cancel_all(), 2)
        self.assertTrue(a.token.cancelled)
        self.assertTrue(b.token.cancelled)
        # Already tripped tokens are not counted again
        self.assertEqual(registry.cancel_all(), 0)

    def test_discard(self):
        registry = SessionRegistry()
        session = StreamSession(kind="download")
        registry.add(session)
        registry.discard(session)
        registry.discard(session)
        self.assertEqual(len(registry), 0)


if __name__ == "__main__":
    unittest.main()
