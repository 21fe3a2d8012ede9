from __future__ import annotations

import asyncio


class LagSampler:
    """Periodically measures how late the event loop runs a scheduled callback."""

    def __init__(self, interval_ms: int = 250) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        self.interval_ms = interval_ms
        self._lag_ms: float = 0.0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._expected: float = 0.0

    @property
    def running(self) -> bool:
        return self._handle is not None

    def current(self) -> float:
        return self._lag_ms

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if self._handle is not None:
            return
        self._loop = loop or asyncio.get_running_loop()
        self._schedule()

    def ensure_started(self) -> None:
        """Start on the running loop, if there is one."""

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._handle is not None and self._loop is loop:
            return
        self.stop()
        self.start(loop)

    def stop(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    def _schedule(self) -> None:
        assert self._loop is not None
        interval = self.interval_ms / 1000.0
        self._expected = self._loop.time() + interval
        self._handle = self._loop.call_later(interval, self._tick)

    def _tick(self) -> None:
        assert self._loop is not None
        late = (self._loop.time() - self._expected) * 1000.0
        self._lag_ms = max(0.0, late)
        self._schedule()
