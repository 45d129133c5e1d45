"""Tests for server.latency -- clamping and the measurement series."""

import unittest

from server.latency import (
    LatencyProbe,
    LatencyReport,
    LatencySample,
    clamp_count,
    clamp_interval,
)


class TestClamping(unittest.TestCase):
    def test_count_default(self):
        self.assertEqual(clamp_count(None), 5)
        self.assertEqual(clamp_count("abc"), 5)

    def test_count_bounds(self):
        self.assertEqual(clamp_count("50"), 10)
        self.assertEqual(clamp_count("-3"), 1)
        self.assertEqual(clamp_count("3"), 3)

    def test_interval_floor(self):
        self.assertEqual(clamp_interval(None), 100)
        self.assertEqual(clamp_interval("10"), 100)
        self.assertEqual(clamp_interval("250"), 250)


class TestLatencyReport(unittest.TestCase):
    def test_to_dict_shape(self):
        report = LatencyReport(samples=[
            LatencySample(index=0, start_time=1000.0, server_time=1000.0, latency=0.0),
            LatencySample(index=1, start_time=1000.0, server_time=1100.0, latency=100.0),
        ])
        report.calculate()
        d = report.to_dict()
        self.assertEqual(len(d["measurements"]), 2)
        self.assertEqual(
            d["measurements"][1],
            {"index": 1, "clientStartTime": 1000.0, "serverTime": 1100.0, "latency": 100.0},
        )
        self.assertEqual(d["statistics"]["average"], "50.000")
        self.assertEqual(d["statistics"]["jitter"], "100.000")


class TestLatencyProbe(unittest.IsolatedAsyncioTestCase):
    async def test_five_samples_at_floor_interval(self):
        report = await LatencyProbe().run(count=5, interval_ms=100)

        self.assertEqual(len(report.samples), 5)
        self.assertEqual([s.index for s in report.samples], [0, 1, 2, 3, 4])
        latencies = [s.latency for s in report.samples]
        self.assertAlmostEqual(latencies[0], 0.0, delta=5)
        # Measured from the probe start, so strictly growing
        self.assertEqual(latencies, sorted(latencies))
        self.assertGreaterEqual(latencies[-1], 400 - 5)

        stats = report.stats
        self.assertEqual(stats.count, 5)
        self.assertAlmostEqual(stats.jitter, stats.max - stats.min)
        self.assertAlmostEqual(stats.mean, sum(latencies) / 5)

    async def test_shared_start_time(self):
        report = await LatencyProbe().run(count=2, interval_ms=100)
        self.assertEqual(report.samples[0].start_time, report.samples[1].start_time)

    async def test_interval_below_floor_is_raised(self):
        report = await LatencyProbe().run(count=2, interval_ms=1)
        self.assertGreaterEqual(report.samples[1].latency, 100 - 5)

    async def test_single_sample(self):
        report = await LatencyProbe().run(count=1)
        self.assertEqual(len(report.samples), 1)
        self.assertEqual(report.stats.jitter, 0.0)


if __name__ == "__main__":
    unittest.main()
