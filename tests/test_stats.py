"""Unit tests for server.stats -- pure functions and dataclasses."""

import unittest

from server.stats import (
    LatencyStats,
    SpeedStats,
    calculate_efficiency,
    calculate_jitter,
    calculate_mbps,
    format_fixed,
)


class TestCalculateJitter(unittest.TestCase):
    def test_empty(self):
        self.assertEqual(calculate_jitter([]), 0.0)

    def test_single(self):
        self.assertEqual(calculate_jitter([10.0]), 0.0)

    def test_spread(self):
        self.assertAlmostEqual(calculate_jitter([0.0, 101.0, 203.0, 304.0, 405.0]), 405.0)

    def test_order_independent(self):
        self.assertAlmostEqual(calculate_jitter([15.0, 10.0, 20.0]), 10.0)


class TestCalculateMbps(unittest.TestCase):
    def test_ten_mb_in_half_second(self):
        # 10 MB * 8 / (0.5 s * 1048576) = 160
        self.assertAlmostEqual(calculate_mbps(10 * 1024 * 1024, 0.5), 160.0)

    def test_zero_duration(self):
        self.assertEqual(calculate_mbps(1000, 0), 0.0)

    def test_negative_duration(self):
        self.assertEqual(calculate_mbps(1000, -1), 0.0)


class TestCalculateEfficiency(unittest.TestCase):
    def test_full(self):
        self.assertAlmostEqual(calculate_efficiency(1024 * 1024, 1.0), 100.0)

    def test_half(self):
        self.assertAlmostEqual(calculate_efficiency(512 * 1024, 1.0), 50.0)

    def test_undeclared_size(self):
        self.assertEqual(calculate_efficiency(123, 0), 100.0)


class TestLatencyStats(unittest.TestCase):
    def test_calculate(self):
        ls = LatencyStats(samples=[0.0, 100.0, 200.0, 300.0, 400.0])
        ls.calculate()
        self.assertEqual(ls.count, 5)
        self.assertAlmostEqual(ls.min, 0.0)
        self.assertAlmostEqual(ls.max, 400.0)
        self.assertAlmostEqual(ls.mean, 200.0)
        self.assertAlmostEqual(ls.jitter, 400.0)

    def test_empty(self):
        ls = LatencyStats()
        ls.calculate()
        self.assertEqual(ls.count, 0)
        self.assertEqual(ls.mean, 0.0)

    def test_to_dict_strings(self):
        ls = LatencyStats(samples=[1.0, 2.0])
        ls.calculate()
        d = ls.to_dict()
        self.assertEqual(d["count"], 2)
        self.assertEqual(d["average"], "1.500")
        self.assertEqual(d["minimum"], "1.000")
        self.assertEqual(d["maximum"], "2.000")
        self.assertEqual(d["jitter"], "1.000")


class TestSpeedStats(unittest.TestCase):
    def test_calculate(self):
        ss = SpeedStats(bytes_transferred=10 * 1024 * 1024, duration_ms=500)
        ss.calculate()
        self.assertAlmostEqual(ss.speed_mbps, 160.0)
        self.assertEqual(ss.to_dict()["speed_mbps"], "160.000")


class TestFormatFixed(unittest.TestCase):
    def test_default_places(self):
        self.assertEqual(format_fixed(12.5), "12.500")

    def test_custom_places(self):
        self.assertEqual(format_fixed(99.999, 2), "100.00")


if __name__ == "__main__":
    unittest.main()
