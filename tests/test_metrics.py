"""Tests for the PerformanceTracker class."""

import threading
import unittest

from research_scraper.metrics import PerformanceTracker


class TestPerformanceTracker(unittest.TestCase):
    """Verify metric recording and aggregation."""

    def test_empty_metrics(self):
        """A new tracker has no metrics."""
        self.assertEqual(PerformanceTracker().get_metrics(), {})

    def test_aggregates_per_name(self):
        """Samples with the same name are aggregated together."""
        tracker = PerformanceTracker()
        tracker.record_metric("page_fetch", 1.0, unit="s")
        tracker.record_metric("page_fetch", 3.0, unit="s")
        tracker.record_metric("bytes", 100)
        metrics = tracker.get_metrics()
        self.assertEqual(metrics["page_fetch"]["count"], 2)
        self.assertAlmostEqual(metrics["page_fetch"]["avg"], 2.0)
        self.assertAlmostEqual(metrics["page_fetch"]["max"], 3.0)
        self.assertEqual(metrics["bytes"]["total"], 100)

    def test_timer_records_once(self):
        """Stopping a timer twice records one sample."""
        tracker = PerformanceTracker()
        timer = tracker.start_timer("work")
        timer.checkpoint("half")
        timer.stop()
        timer.stop()
        events = tracker.export_json()
        self.assertEqual(len(events), 1)
        self.assertIn("half", events[0]["checkpoints"])

    def test_cancel_all_counts_running_timers(self):
        """cancel_all stops and counts the timers still running."""
        tracker = PerformanceTracker()
        tracker.start_timer("a").stop()
        running = tracker.start_timer("b")
        self.assertEqual(tracker.cancel_all(), 1)
        self.assertTrue(running.done)
        running.stop()
        self.assertEqual(len(tracker.export_json()), 1)

    def test_bounded_event_buffer(self):
        """Only the most recent events are kept."""
        tracker = PerformanceTracker(max_events=5)
        for i in range(20):
            tracker.record_metric("x", i)
        self.assertEqual(len(tracker.export_json()), 5)

    def test_thread_safe_recording(self):
        """Concurrent recording loses no samples."""
        tracker = PerformanceTracker()

        def worker():
            for _ in range(100):
                tracker.record_metric("x", 1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(tracker.get_metrics()["x"]["count"], 400)


if __name__ == "__main__":
    unittest.main()
