from __future__ import annotations

from collections.abc import Mapping
from http import HTTPStatus
from typing import Any

from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

INTERNAL_ERROR_MESSAGE = "An internal server error occurred"


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


class ServiceError(HTTPException):
    """HTTP-shaped error: status code, headers and server/client class.

    The wrapped cause (if any) is kept as ``__cause__`` so log records carry
    the full chain.
    """

    is_server = False

    def __init__(
        self,
        status_code: int,
        message: str | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(
            status_code=status_code,
            detail=message or _phrase(status_code),
            headers=dict(headers) if headers else None,
        )
        self.data = data

    def __str__(self) -> str:
        return str(self.detail)

    def payload(self) -> dict[str, Any]:
        message = self.detail
        if self.status_code == 500:
            message = INTERNAL_ERROR_MESSAGE
        return {
            "statusCode": self.status_code,
            "error": _phrase(self.status_code),
            "message": message,
        }

    def to_response(self) -> JSONResponse:
        return JSONResponse(self.payload(), status_code=self.status_code, headers=self.headers)


class ClientError(ServiceError):
    pass


class ServerError(ServiceError):
    is_server = True


def _message_of(err: Any) -> str | None:
    if err is None:
        return None
    if isinstance(err, Mapping):
        message = err.get("message")
        return str(message) if message else None
    if isinstance(err, HTTPException):
        return str(err.detail)
    text = str(err)
    return text or None


def wrap_error(
    err: Any,
    status_code: int,
    message: str | None = None,
    headers: Mapping[str, str] | None = None,
) -> ServiceError:
    """Wrap ``err`` in the error class matching ``status_code``."""

    cls = ServerError if status_code >= 500 else ClientError
    data = err if isinstance(err, Mapping) else getattr(err, "data", None)
    wrapped = cls(status_code, message or _message_of(err), headers=headers, data=data)
    if isinstance(err, BaseException):
        wrapped.__cause__ = err
    return wrapped
