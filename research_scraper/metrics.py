from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Any, Deque, Dict, List, Optional


class TimerHandle:
    """One running timer created by PerformanceTracker.start_timer()."""

    def __init__(self, tracker: "PerformanceTracker", label: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._tracker = tracker
        self.label = label
        self.metadata = metadata or {}
        self._start = time.monotonic()
        self._checkpoints: List[tuple[str, float]] = []
        self._done = False

    def checkpoint(self, name: str) -> float:
        elapsed = time.monotonic() - self._start
        self._checkpoints.append((name, elapsed))
        return elapsed

    def stop(self) -> float:
        """Stop the timer, record its duration in seconds and return it."""
        elapsed = time.monotonic() - self._start
        if not self._done:
            self._done = True
            self._tracker.record_metric(self.label, elapsed, unit="s", checkpoints=dict(self._checkpoints))
        return elapsed

    def cancel(self) -> None:
        self._done = True

    @property
    def done(self) -> bool:
        return self._done


class PerformanceTracker:
    """Thread-safe collector for timings and counters of one execution.

    Keeps the most recent metric events in a bounded deque and exposes
    per-name aggregates through get_metrics()."""

    def __init__(self, max_events: int = 10000) -> None:
        self._lock = Lock()
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)
        self._timers: List[TimerHandle] = []

    def start_timer(self, label: str, metadata: Optional[Dict[str, Any]] = None) -> TimerHandle:
        timer = TimerHandle(self, label, metadata)
        with self._lock:
            self._timers.append(timer)
        return timer

    def record_metric(self, name: str, value: float, unit: Optional[str] = None, **extra: Any) -> None:
        """Record one metric sample with the current timestamp."""
        with self._lock:
            self._events.append({"timestamp": time.time(), "name": name, "value": value, "unit": unit, **extra})

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """Return count/total/avg/max per metric name."""
        with self._lock:
            events = list(self._events)
        summary: Dict[str, Dict[str, float]] = {}
        for event in events:
            entry = summary.setdefault(event["name"], {"count": 0, "total": 0.0, "max": 0.0})
            entry["count"] += 1
            entry["total"] += event["value"]
            entry["max"] = max(entry["max"], event["value"])
        for entry in summary.values():
            entry["avg"] = entry["total"] / entry["count"] if entry["count"] else 0.0
        return summary

    def export_json(self) -> List[Dict[str, Any]]:
        """Export all recorded events as a list of dictionaries."""
        with self._lock:
            return [dict(e) for e in self._events]

    def cancel_all(self) -> int:
        """Cancel timers still running. Returns how many were cancelled."""
        with self._lock:
            pending = [t for t in self._timers if not t.done]
            self._timers.clear()
        for timer in pending:
            timer.cancel()
        return len(pending)
