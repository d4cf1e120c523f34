from __future__ import annotations

import threading
import time
from typing import Optional


class RateLimiter:
    """Thread-safe request spacing for one plugin.

    acquire() blocks the calling worker until `delay_seconds` have passed
    since the previous permitted request, so a plugin's concurrent page
    fetches never exceed its declared request rate. Pass a cancel event to
    stop waiting early."""

    def __init__(self, delay_seconds: float) -> None:
        self._interval = max(0.0, delay_seconds)
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """Wait for the next slot. Returns False if cancelled while waiting."""
        if self._interval <= 0:
            return not (cancel_event is not None and cancel_event.is_set())
        with self._lock:
            now = time.monotonic()
            wait_for = max(0.0, self._next_allowed - now)
            self._next_allowed = max(self._next_allowed, now) + self._interval
        if wait_for > 0:
            if cancel_event is not None:
                return not cancel_event.wait(wait_for)
            time.sleep(wait_for)
        return not (cancel_event is not None and cancel_event.is_set())
