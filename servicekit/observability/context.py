from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable


@runtime_checkable
class SupportsChildScope(Protocol):
    """A log handle that can derive a child handle carrying extra fields."""

    def bind(self, **fields: Any) -> Any: ...


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class RequestContext:
    """Identity, timing and scoped logger for a single in-flight request.

    Attributes:
        id: Request identifier, propagated from ``x-request-id`` or generated.
        start: Request start in milliseconds since the epoch.
        log: Log handle bound with ``request_id``; ``None`` when no parent was given.
    """

    id: str
    start: int
    log: Any = None
    _anchor: float | None = field(default=None, repr=False)
    _last_elapsed: int = field(default=0, repr=False)
    _timer: asyncio.TimerHandle | None = field(default=None, repr=False)
    _timer_armed: bool = field(default=False, repr=False)

    @classmethod
    def create(
        cls,
        supplied_id: str | None = None,
        supplied_start: int | None = None,
        parent: Any = None,
    ) -> RequestContext:
        request_id = supplied_id or str(uuid.uuid4())
        anchor = None
        if supplied_start:
            start = int(supplied_start)
        else:
            start = now_millis()
            anchor = time.monotonic()

        log = parent
        if isinstance(parent, SupportsChildScope):
            log = parent.bind(request_id=request_id)

        return cls(id=request_id, start=start, log=log, _anchor=anchor)

    def elapsed(self) -> int:
        """Milliseconds since ``start``; never negative, never decreasing."""

        if self._anchor is not None:
            value = int((time.monotonic() - self._anchor) * 1000)
        else:
            value = now_millis() - self.start
        if value > self._last_elapsed:
            self._last_elapsed = value
        return self._last_elapsed

    @property
    def timer(self) -> asyncio.TimerHandle | None:
        return self._timer

    def arm_timer(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle | None:
        # One alarm per request, even if arming is requested again later.
        if self._timer_armed:
            return self._timer
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None

        def fire() -> None:
            self._timer = None
            callback()

        self._timer = loop.call_later(delay_ms / 1000.0, fire)
        self._timer_armed = True
        return self._timer

    def clear_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
