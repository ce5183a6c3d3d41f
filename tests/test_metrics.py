# ABOUTME: Tests for run metrics
# ABOUTME: Validates counters, success rate and serialization

"""Tests for Metrics."""

import time
import unittest

from ralph_runner.metrics import Metrics


class TestMetrics(unittest.TestCase):
    """Test metrics tracking."""

    def test_metrics_initialization(self):
        metrics = Metrics()

        self.assertEqual(metrics.iterations, 0)
        self.assertEqual(metrics.successful_iterations, 0)
        self.assertEqual(metrics.failed_iterations, 0)
        self.assertEqual(metrics.timeout_retries, 0)

    def test_success_rate_calculation(self):
        metrics = Metrics()

        # no iterations yet
        self.assertEqual(metrics.success_rate(), 0.0)

        metrics.successful_iterations = 8
        metrics.failed_iterations = 2
        self.assertEqual(metrics.success_rate(), 0.8)

    def test_elapsed_hours(self):
        metrics = Metrics(start_time=time.time() - 1800)
        self.assertAlmostEqual(metrics.elapsed_hours(), 0.5, places=2)

    def test_metrics_to_dict(self):
        metrics = Metrics()
        metrics.iterations = 10
        metrics.successful_iterations = 8
        metrics.usage_limit_waits = 1

        data = metrics.to_dict()
        self.assertEqual(data["iterations"], 10)
        self.assertEqual(data["successful_iterations"], 8)
        self.assertEqual(data["usage_limit_waits"], 1)
        self.assertIn("elapsed_hours", data)
        self.assertIn("success_rate", data)
        self.assertNotIn("start_time", data)


if __name__ == "__main__":
    unittest.main()
