"""Tests for the BackoffStrategy class."""

import unittest

from research_scraper.backoff import BackoffStrategy
from research_scraper.errors import ErrorCode


class TestBackoffStrategy(unittest.TestCase):
    """Verify exponential backoff produces correct sleep durations."""

    def test_first_attempt_returns_base(self):
        """First retry should sleep approximately the base duration."""
        backoff = BackoffStrategy(base_seconds=1.0, max_seconds=30.0)
        sleep = backoff.get_sleep(attempt=1)
        self.assertGreaterEqual(sleep, 1.0)
        self.assertLessEqual(sleep, 1.1)

    def test_exponential_growth(self):
        """Without jitter the sequence is 0.5, 1.0, 2.0; jitter never reorders it."""
        backoff = BackoffStrategy(base_seconds=0.5, max_seconds=100.0)
        self.assertLess(backoff.get_sleep(1), backoff.get_sleep(2))
        self.assertLess(backoff.get_sleep(2), backoff.get_sleep(3))

    def test_respects_max_seconds(self):
        """Delays are capped at max_seconds."""
        backoff = BackoffStrategy(base_seconds=1.0, max_seconds=5.0)
        self.assertLessEqual(backoff.get_sleep(attempt=20), 5.5)

    def test_rate_limited_waits_longer(self):
        """HTTP 429 doubles the base delay."""
        backoff = BackoffStrategy(base_seconds=1.0, max_seconds=100.0)
        sleep = backoff.get_sleep(attempt=1, error_code=ErrorCode.http(429))
        self.assertGreaterEqual(sleep, 2.0)
        self.assertLessEqual(sleep, 2.2)


class TestRetryableCodes(unittest.TestCase):
    """Which error codes are worth retrying."""

    def test_transient_failures_are_retryable(self):
        """Timeouts, network errors and 5xx responses are retried."""
        for code in (ErrorCode.TIMEOUT, ErrorCode.CONNECTION_ERROR, "HTTP_429", "HTTP_503"):
            self.assertTrue(BackoffStrategy.is_retryable(code), code)

    def test_permanent_failures_are_not_retryable(self):
        """Client errors and parse errors are not retried."""
        for code in ("HTTP_404", "HTTP_403", ErrorCode.PARSE_ERROR, ErrorCode.INVALID_URL, None):
            self.assertFalse(BackoffStrategy.is_retryable(code), code)


if __name__ == "__main__":
    unittest.main()
