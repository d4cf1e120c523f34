"""Tests for the LockSweeper background job."""

import time
import unittest
from unittest import mock

from research_scraper.errors import PersistenceError
from research_scraper.locks import ExecutionLockManager
from research_scraper.sweeper import LockSweeper

from support import TempDatabase


class TestLockSweeper(unittest.TestCase):
    """The background sweeper for expired leases."""

    def setUp(self):
        """Create a fresh database, lock manager and sweeper."""
        self.database = TempDatabase()
        self.locks = ExecutionLockManager(self.database.session_factory)

    def tearDown(self):
        """Stop the sweeper and remove the database."""
        self.database.close()

    def test_sweep_once_releases_expired(self):
        """A single sweep removes expired leases."""
        self.locks.acquire("s1", "static", -1)
        sweeper = LockSweeper(self.locks)
        self.assertEqual(sweeper.sweep_once(), 1)
        self.assertEqual(sweeper.total_swept, 1)
        self.assertFalse(self.locks.is_locked("s1", "static"))

    def test_sweep_errors_are_logged(self):
        """A failing sweep is logged and reports nothing swept."""
        sweeper = LockSweeper(self.locks)
        with mock.patch.object(self.locks, "sweep_expired", side_effect=PersistenceError("db down")):
            with self.assertLogs("research_scraper.sweeper", level="ERROR"):
                self.assertEqual(sweeper.sweep_once(), 0)

    def test_background_thread_stops(self):
        """stop() ends the background thread."""
        self.locks.acquire("s1", "static", -1)
        sweeper = LockSweeper(self.locks, interval_seconds=0.05)
        sweeper.start()
        deadline = time.monotonic() + 5
        while sweeper.total_swept == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        sweeper.stop(timeout=5)
        self.assertIsNone(sweeper._thread)
        self.assertEqual(sweeper.total_swept, 1)


if __name__ == "__main__":
    unittest.main()
