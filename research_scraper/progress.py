from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from .logging_utils import log_event

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


class ProgressReporter(ABC):
    """Sink for incremental execution status.

    Implementations must never block the caller: scraping threads call
    report() from inside page fetch workers."""

    @abstractmethod
    def report(
        self,
        current: int,
        total: int,
        message: str,
        plugin_id: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        """Report one progress step."""

    @abstractmethod
    def complete(self, summary: Dict[str, Any]) -> None:
        """Report the terminal success state."""

    @abstractmethod
    def error(self, err: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        """Report the terminal error state."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending events and release resources."""


class NullProgressReporter(ProgressReporter):
    """Discards every event."""

    def report(self, current, total, message, plugin_id=None, url=None) -> None:
        return None

    def complete(self, summary) -> None:
        return None

    def error(self, err, context=None) -> None:
        return None

    def close(self) -> None:
        return None


class CallbackProgressReporter(ProgressReporter):
    """Delivers events to a callback from a background dispatcher thread.

    Events wait in a bounded buffer; when the consumer falls behind, the
    oldest pending event is dropped so producers never wait."""

    def __init__(
        self,
        callback: ProgressCallback,
        correlation_id: str,
        session_id: Optional[str] = None,
        buffer_size: int = 256,
    ) -> None:
        self._callback = callback
        self._correlation_id = correlation_id
        self._session_id = session_id
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=max(1, buffer_size))
        self._cv = threading.Condition()
        self._sequence = 0
        self._dropped = 0
        self._closed = False
        self._thread = threading.Thread(target=self._dispatch, name="progress-dispatch", daemon=True)
        self._thread.start()

    @property
    def dropped(self) -> int:
        return self._dropped

    def report(self, current, total, message, plugin_id=None, url=None) -> None:
        payload = {"current": current, "total": total, "message": message}
        if plugin_id:
            payload["plugin_id"] = plugin_id
        if url:
            payload["url"] = url
        if total:
            payload["percentage"] = round(current / total * 100)
        self._enqueue("progress", payload)

    def event(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Queue an event of any type, e.g. the start and done markers of a stream."""
        self._enqueue(event_type, payload)

    def complete(self, summary) -> None:
        self._enqueue("complete", {"message": "Execution complete", "summary": summary})

    def error(self, err, context=None) -> None:
        self._enqueue(
            "error",
            {
                "message": str(err),
                "error_type": type(err).__name__,
                "code": getattr(err, "code", None),
                "context": context or {},
            },
        )

    def close(self, timeout: float = 5.0) -> None:
        """Deliver what is still buffered, then stop the dispatcher."""
        with self._cv:
            if self._closed:
                return
            self._closed = True
            self._cv.notify_all()
        self._thread.join(timeout=timeout)

    def _enqueue(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._cv:
            if self._closed:
                return
            self._sequence += 1
            if len(self._buffer) == self._buffer.maxlen:
                self._dropped += 1
            self._buffer.append(
                {
                    "type": event_type,
                    "sequence": self._sequence,
                    "correlation_id": self._correlation_id,
                    "session_id": self._session_id,
                    "timestamp": time.time(),
                    "payload": payload,
                }
            )
            self._cv.notify()

    def _dispatch(self) -> None:
        while True:
            with self._cv:
                while not self._buffer and not self._closed:
                    self._cv.wait()
                if not self._buffer and self._closed:
                    return
                event = self._buffer.popleft()
            try:
                self._callback(event)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.WARNING,
                    "progress_callback_failed",
                    correlation_id=self._correlation_id,
                    event_type=event["type"],
                    error=str(exc),
                )
