"""Request/response lifecycle logging.

One trace record when a request arrives, one classified record when its
response goes out, and an error record if the response takes longer than
``unresponsive_timeout`` milliseconds.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Union

import structlog
from starlette.requests import Request

from servicekit.config import LogOptions
from servicekit.observability.context import RequestContext, now_millis
from servicekit.observability.errors import serialize_error
from servicekit.observability.gc_stats import StatsSource
from servicekit.observability.lag import LagSampler
from servicekit.observability.logging import resolve_level

REQUEST_ID_HEADER = "x-request-id"
FORWARDED_FOR_HEADER = "x-forwarded-for"


@dataclass
class FrameworkErrorResponse:
    error: Any
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    is_server: bool = False


@dataclass
class BusinessFailureResponse:
    source: Any
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class SuccessResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)


ResponseShape = Union[FrameworkErrorResponse, BusinessFailureResponse, SuccessResponse]


def raw_url(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _as_data(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, str):
        return {"info": data}
    if isinstance(data, Mapping):
        return dict(data)
    return {"info": data}


class RequestLogger:
    def __init__(
        self,
        options: LogOptions | Mapping[str, Any] | None = None,
        lag_probe_interval: int = 250,
        unresponsive_timeout: int = 30000,
        stats_source: StatsSource | None = None,
        lag_sampler: LagSampler | None = None,
    ) -> None:
        if options is None:
            options = LogOptions()
        elif isinstance(options, Mapping):
            options = LogOptions(**options)
        self.options = options

        self._stdlib = logging.getLogger(options.name)
        self._stdlib.setLevel(resolve_level(options.level))
        # Lazy proxy: picks up configure_logging() even if it runs after us.
        self.log = structlog.get_logger(options.name, name=options.name, process=options.process)

        self.lag = lag_sampler or LagSampler(lag_probe_interval or 250)
        self.unresponsive_timeout = unresponsive_timeout or 30000

        self._unsubscribe_stats: Callable[[], None] | None = None
        if stats_source is not None:
            self._unsubscribe_stats = stats_source.subscribe(self._on_stats)

    def _on_stats(self, stats: dict[str, Any]) -> None:
        self.log_info("GC", stats)

    @property
    def trace_enabled(self) -> bool:
        return self._stdlib.isEnabledFor(logging.DEBUG)

    def lag_as_fixed_millis(self) -> int:
        return int(round(self.lag.current()))

    def context_for(self, request: Request) -> RequestContext | None:
        return getattr(request.state, "context", None)

    def log_incoming_request(self, request: Request) -> RequestContext:
        existing = self.context_for(request)
        if existing is not None:
            return existing

        self.lag.ensure_started()
        context = RequestContext.create(request.headers.get(REQUEST_ID_HEADER), None, self.log)
        request.state.context = context

        data: dict[str, Any] = {
            "request": {
                "method": request.method,
                "headers": dict(request.headers),
                "params": dict(request.path_params),
                "path": request.url.path,
                "query": dict(request.query_params),
                "state": dict(request.cookies),
                "url": raw_url(request),
                "time": context.start,
            },
            "lag": self.lag_as_fixed_millis(),
        }
        remote = request.headers.get(FORWARDED_FOR_HEADER)
        if remote:
            data["request"]["remote"] = remote

        message = f"{request.method} {request.url.path}"
        context.log.debug(message, **data)

        def unresponsive() -> None:
            context.log.error(f"{message} is unresponsive ({context.elapsed()}ms)", **data)

        context.arm_timer(self.unresponsive_timeout, unresponsive)
        return context

    def log_outgoing_response(self, request: Request, response: ResponseShape) -> None:
        context = self.context_for(request)
        if context is None:
            # A response we never saw arrive; log it anyway.
            context = RequestContext.create(request.headers.get(REQUEST_ID_HEADER), None, self.log)
            request.state.context = context

        context.clear_timer()

        duration = context.elapsed()
        data: dict[str, Any] = {
            "request": {
                "method": request.method,
                "path": request.url.path,
                "query": dict(request.query_params),
                "url": raw_url(request),
                "time": context.start,
            },
            "response": {"time": now_millis()},
            "duration": duration,
            "lag": self.lag_as_fixed_millis(),
        }
        remote = request.headers.get(FORWARDED_FOR_HEADER)
        if remote:
            data["request"]["remote"] = remote

        if self.trace_enabled:
            data["request"]["headers"] = dict(request.headers)
            data["request"]["params"] = dict(request.path_params)
            data["request"]["state"] = dict(request.cookies)

        response.headers[REQUEST_ID_HEADER] = context.id
        data["response"]["headers"] = response.headers
        data["response"]["statusCode"] = response.status_code

        message = f"{request.method} {request.url.path} {response.status_code} ({duration}ms)"

        if isinstance(response, FrameworkErrorResponse):
            error = serialize_error(response.error)
            if response.is_server:
                data["error"] = error
                context.log.error(message, **data)
            else:
                if isinstance(error, dict):
                    error = {key: value for key, value in error.items() if key != "stack"}
                data["error"] = error
                context.log.warning(message, **data)
        elif isinstance(response, BusinessFailureResponse):
            data["error"] = serialize_error(response.source)
            context.log.error(message, **data)
        else:
            context.log.info(message, **data)

    def log_info(self, msg: str, data: Any = None) -> None:
        self.log.info(msg, **_as_data(data))

    def log_warning(self, msg: str, data: Any = None) -> None:
        self.log.warning(msg, **_as_data(data))

    def log_trace(self, msg: str, data: Any = None) -> None:
        self.log.debug(msg, **_as_data(data))

    def log_error(self, msg: str, err: Any = None) -> None:
        self.log.error(msg, err=serialize_error(err))

    def close(self) -> None:
        unsubscribe, self._unsubscribe_stats = self._unsubscribe_stats, None
        if unsubscribe is not None:
            unsubscribe()
        self.lag.stop()
