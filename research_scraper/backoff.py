from __future__ import annotations

import random
from typing import Optional

from .errors import ErrorCode

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
RETRYABLE_ERROR_CODES = {ErrorCode.TIMEOUT, ErrorCode.CONNECTION_ERROR} | {
    ErrorCode.http(status) for status in RETRYABLE_STATUS_CODES
}


class BackoffStrategy:
    """Exponential backoff with jitter for page fetch retries.

    Sleep is base * 2^(attempt-1) plus up to 10% jitter, capped at max_seconds.
    Rate-limited responses (HTTP 429) wait twice as long."""

    def __init__(self, base_seconds: float = 0.5, max_seconds: float = 10.0) -> None:
        self._base = base_seconds
        self._max = max_seconds

    def get_sleep(self, attempt: int, error_code: Optional[str] = None) -> float:
        """Calculate the sleep duration in seconds before retry number `attempt`."""
        base = self._base * 2 if error_code == ErrorCode.http(429) else self._base
        exp = min(self._max, base * (2 ** max(attempt - 1, 0)))
        jitter = random.uniform(0, exp * 0.1)
        return exp + jitter

    @staticmethod
    def is_retryable(error_code: Optional[str]) -> bool:
        return error_code in RETRYABLE_ERROR_CODES
