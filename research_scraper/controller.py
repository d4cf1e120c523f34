from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from .models import PageResult


class ThreadPoolController:
    """Bounded fan-out of page fetches for one plugin execution.

    submit() blocks while `limit` pages are in flight. Once the controller
    is stopped or the cancel event fires, further submissions resolve
    immediately to `stopped_result(url)` without running the fetch.
    """

    def __init__(
        self,
        max_workers: int,
        stopped_result: Callable[[str], PageResult],
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="scrape")
        self._stopped_result = stopped_result
        self._cancel_event = cancel_event

        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)

        self._limit = max(1, max_workers)
        self._active = 0
        self._running = False

    def start(self) -> None:
        self._running = True

    def stop(self, wait: bool = True) -> None:
        with self._cv:
            self._running = False
            self._cv.notify_all()
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _accepting(self) -> bool:
        return self._running and not (self._cancel_event is not None and self._cancel_event.is_set())

    def submit(self, fn: Callable[[str], PageResult], url: str) -> Future:
        """Submit one page fetch, blocking while the concurrency limit is reached."""
        with self._cv:
            while self._accepting() and self._active >= self._limit:
                self._cv.wait(timeout=0.1)

            if not self._accepting():
                future: Future = Future()
                future.set_result(self._stopped_result(url))
                return future

            self._active += 1

        return self._executor.submit(self._wrap_task, fn, url)

    def _wrap_task(self, fn: Callable[[str], PageResult], url: str) -> PageResult:
        try:
            return fn(url)
        finally:
            with self._cv:
                self._active = max(0, self._active - 1)
                self._cv.notify_all()
