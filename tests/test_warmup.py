"""Tests for server.warmup -- ordered phases and their pauses."""

import asyncio
import unittest

from server.payload import PayloadCache, size_in_bytes
from server.session import SessionState
from server.warmup import PhaseSequencer


class RecordingSink:
    def __init__(self):
        self.received = 0
        self.closed = False

    async def write(self, data):
        self.received += len(data)

    async def close(self):
        self.closed = True

    def abort(self):
        pass


class TestPhaseSequencer(unittest.IsolatedAsyncioTestCase):
    async def test_default_phases_in_order(self):
        sequencer = PhaseSequencer(PayloadCache())
        seen = []
        sequencer.on_phase = lambda index, size: seen.append((index, size))
        sink = RecordingSink()

        session = await sequencer.run(sink)

        self.assertEqual(seen, [(0, 0.1), (1, 0.5), (2, 1.0), (3, 2.0)])
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertTrue(sink.closed)

    async def test_total_bytes(self):
        sink = RecordingSink()
        session = await PhaseSequencer(PayloadCache()).run(sink)

        expected = sum(size_in_bytes(s) for s in (0.1, 0.5, 1.0, 2.0))
        self.assertEqual(sink.received, expected)
        self.assertEqual(session.offset, expected)

    async def test_delays_are_observed(self):
        sequencer = PhaseSequencer(PayloadCache(), phases=((0.1, 50), (0.1, 50)))
        session = await sequencer.run(RecordingSink())
        # Both delays run, including the one after the last phase
        self.assertGreaterEqual(session.elapsed_ms, 95)

    async def test_cancel_between_phases(self):
        sequencer = PhaseSequencer(PayloadCache(), phases=((0.1, 5000), (0.1, 5000)))
        seen = []
        sequencer.on_phase = lambda index, size: seen.append(index)
        session = sequencer.new_session()

        asyncio.get_running_loop().call_later(0.05, session.token.cancel, "shutdown")
        await sequencer.run(RecordingSink(), session)

        self.assertEqual(seen, [0])
        self.assertEqual(session.state, SessionState.CANCELLED)


if __name__ == "__main__":
    unittest.main()
