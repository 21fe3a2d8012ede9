from __future__ import annotations

import json
from typing import Any, Callable

from starlette.datastructures import MutableHeaders
from starlette.requests import Request

from servicekit.exceptions import ServiceError, wrap_error
from servicekit.observability.request_logger import (
    REQUEST_ID_HEADER,
    BusinessFailureResponse,
    FrameworkErrorResponse,
    RequestLogger,
    ResponseShape,
    SuccessResponse,
)
from servicekit.replies import etag_matches

MAX_INSPECT_BYTES = 64 * 1024


def classify_response(
    request: Request,
    status_code: int,
    headers: dict[str, str],
    body: bytes | None = None,
) -> ResponseShape:
    """Decide once which shape the finished response has."""

    error = getattr(request.state, "error", None)
    if error is not None:
        is_server = getattr(error, "is_server", status_code >= 500)
        return FrameworkErrorResponse(error=error, status_code=status_code, headers=headers, is_server=is_server)

    if body:
        try:
            source = json.loads(body)
        except (ValueError, RecursionError):
            source = None
        if isinstance(source, dict) and source.get("success") is False:
            return BusinessFailureResponse(source=source, status_code=status_code, headers=headers)

    return SuccessResponse(status_code=status_code, headers=headers)


class RequestLoggingMiddleware:
    """Request id propagation plus request/response logging for every HTTP call."""

    def __init__(self, app: Callable[..., Any], logger: RequestLogger) -> None:
        self.app = app
        self.logger = logger

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        context = self.logger.log_incoming_request(request)

        status_code: int = 500
        response_headers: dict[str, str] = {}
        response_started = False
        not_modified = False
        inspect_body = False
        chunks: list[bytes] = []
        size = 0

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code, response_headers, response_started, not_modified, inspect_body, size

            if message.get("type") == "http.response.start":
                response_started = True
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = context.id
                if (
                    status_code == 200
                    and request.method in ("GET", "HEAD")
                    and etag_matches(request.headers.get("if-none-match"), headers.get("etag"))
                ):
                    # Revalidated: keep etag and caching headers, drop the payload.
                    not_modified = True
                    status_code = 304
                    message["status"] = 304
                    for name in ("content-length", "content-type"):
                        if name in headers:
                            del headers[name]
                response_headers = dict(headers)
                content_type = headers.get("content-type", "")
                inspect_body = status_code < 400 and content_type.startswith("application/json")
            elif message.get("type") == "http.response.body" and not_modified:
                message = {**message, "body": b""}
            elif message.get("type") == "http.response.body" and inspect_body:
                chunk = message.get("body", b"")
                size += len(chunk)
                if size > MAX_INSPECT_BYTES:
                    inspect_body = False
                    chunks.clear()
                else:
                    chunks.append(chunk)

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            error = exc if isinstance(exc, ServiceError) else wrap_error(exc, 500)
            request.state.error = error
            if not response_started:
                await error.to_response()(scope, receive, send_wrapper)
            raise
        finally:
            body = b"".join(chunks) if inspect_body else None
            try:
                shape = classify_response(request, status_code, response_headers, body)
            except Exception:
                # The outgoing record is written even when the body cannot be read.
                shape = SuccessResponse(status_code=status_code, headers=response_headers)
            self.logger.log_outgoing_response(request, shape)
