from __future__ import annotations

import logging
import threading
from typing import Optional

from .locks import ExecutionLockManager
from .logging_utils import log_event

logger = logging.getLogger(__name__)


class LockSweeper:
    """Periodically releases expired execution leases.

    run() is the blocking loop; start() runs it in a daemon thread. Each
    cycle calls ExecutionLockManager.sweep_expired() and then waits for the
    interval or for stop()."""

    def __init__(self, lock_manager: ExecutionLockManager, interval_seconds: float = 300.0) -> None:
        self._locks = lock_manager
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.total_swept = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name="lock-sweeper", daemon=True)
        self._thread.start()

    def run(self) -> None:
        while not self._stop_event.is_set():
            self.sweep_once()
            self._stop_event.wait(self._interval)

    def sweep_once(self) -> int:
        try:
            swept = self._locks.sweep_expired()
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "lock_sweep_failed", error=str(exc))
            return 0
        self.total_swept += swept
        return swept

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the loop to stop and wait for the thread to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
