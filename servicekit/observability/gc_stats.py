"""Garbage-collection statistics as a subscribable feed (CPython ``gc.callbacks``)."""

from __future__ import annotations

import gc
import threading
from time import perf_counter
from typing import Any, Callable, Protocol

StatsCallback = Callable[[dict[str, Any]], None]


class StatsSource(Protocol):
    def subscribe(self, callback: StatsCallback) -> Callable[[], None]: ...


class GcStatsSource:
    """Emits one sample per finished collection of ``min_generation`` or older.

    The ``gc`` hook is only installed while at least one subscriber exists.
    """

    def __init__(self, min_generation: int = 2) -> None:
        self.min_generation = min_generation
        self._lock = threading.RLock()
        self._subscribers: list[StatsCallback] = []
        self._started_at: float | None = None
        self._installed = False

    def subscribe(self, callback: StatsCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)
            if not self._installed:
                gc.callbacks.append(self._on_gc)
                self._installed = True

        def unsubscribe() -> None:
            self._unsubscribe(callback)

        return unsubscribe

    def _unsubscribe(self, callback: StatsCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
            if not self._subscribers and self._installed:
                if self._on_gc in gc.callbacks:
                    gc.callbacks.remove(self._on_gc)
                self._installed = False

    def _on_gc(self, phase: str, info: dict[str, Any]) -> None:
        if phase == "start":
            self._started_at = perf_counter()
            return
        if info.get("generation", 0) < self.min_generation:
            return

        pause_ms = 0.0
        if self._started_at is not None:
            pause_ms = (perf_counter() - self._started_at) * 1000.0
        sample = {
            "generation": info.get("generation"),
            "collected": info.get("collected"),
            "uncollectable": info.get("uncollectable"),
            "pause_ms": round(pause_ms, 3),
            "counts": list(gc.get_count()),
        }

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(sample)
