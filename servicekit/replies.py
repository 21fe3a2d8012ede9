"""Turn handler outcomes into HTTP decisions.

Errors are mapped onto a small set of statuses: client errors (4xx) pass
through, upstream failures (5xx) become 503 and anything else is hidden
behind a 404. Successful payloads are serialized once and fingerprinted so
clients can revalidate with ``If-None-Match``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel
from starlette.responses import RedirectResponse, Response

from servicekit.exceptions import ClientError, ServerError, ServiceError, wrap_error

JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class Success:
    status_code: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    etag: str | None = None

    def to_response(self) -> Response:
        return Response(content=self.body, status_code=self.status_code, headers=self.headers)


Outcome = Union[ClientError, ServerError, Success]


def _lookup(source: Any, key: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def status_hint(err: Any) -> int | None:
    """Numeric status carried by ``err`` (``code``, then ``status_code``/``statusCode``)."""

    value = None
    for key in ("code", "status_code", "statusCode"):
        value = _lookup(err, key)
        if value:
            break
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def map_status(code: int | None) -> int:
    if code is not None:
        if 400 <= code < 500:
            return code
        if 500 <= code < 600:
            return 503
    return 404


def _is_absent(data: Any) -> bool:
    if data is None or data is False:
        return True
    if isinstance(data, (Mapping, list, tuple, set, frozenset, BaseModel)):
        return False
    return not data


def serialize_body(data: Any) -> bytes:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    # Same encoding as starlette's JSONResponse, so the hash matches the wire bytes.
    return json.dumps(
        data,
        ensure_ascii=False,
        allow_nan=False,
        indent=None,
        separators=(",", ":"),
    ).encode("utf-8")


def content_hash(body: bytes) -> str:
    return hashlib.md5(body, usedforsecurity=False).hexdigest()


def etag_matches(if_none_match: str | None, etag: str | None) -> bool:
    """Weak comparison of an ``If-None-Match`` header against a response etag."""

    if not if_none_match or not etag:
        return False
    if if_none_match.strip() == "*":
        return True

    def opaque(tag: str) -> str:
        tag = tag.strip()
        if tag.startswith("W/"):
            tag = tag[2:]
        return tag.strip('"')

    wanted = opaque(etag)
    return any(opaque(candidate) == wanted for candidate in if_none_match.split(","))


def decide(err: Any, data: Any, cache_control: str | None = None, etag: bool = True) -> Outcome:
    if not _is_absent(err):
        headers = _lookup(err, "headers")
        return wrap_error(
            err,
            map_status(status_hint(err)),
            headers=dict(headers) if isinstance(headers, Mapping) else None,
        )

    if _is_absent(data):
        return ClientError(404)

    body = serialize_body(data)
    fingerprint = content_hash(body)
    headers = {"content-type": JSON_CONTENT_TYPE}
    if etag:
        headers["etag"] = f'"{fingerprint}"'
    if cache_control:
        headers["cache-control"] = cache_control
    return Success(status_code=200, body=body, headers=headers, etag=fingerprint)


def reply(err: Any, data: Any, cache_control: str | None = None) -> Response:
    """Render a handler outcome; error outcomes are raised as ``ServiceError``."""

    outcome = decide(err, data, cache_control)
    if isinstance(outcome, ServiceError):
        raise outcome
    return outcome.to_response()


def _set_cookies(source: Any) -> list[str]:
    if source is None:
        return []
    headers = getattr(source, "headers", None)
    if headers is None:
        headers = source
    get_list = getattr(headers, "get_list", None) or getattr(headers, "getlist", None)
    if callable(get_list):
        return [str(value) for value in get_list("set-cookie")]
    if not hasattr(headers, "get"):
        return []
    value = headers.get("set-cookie")
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


def redirect(url: str, headers_source: Any = None, status_code: int = 302) -> RedirectResponse:
    """Redirect to ``url``, forwarding any ``set-cookie`` from ``headers_source``."""

    response = RedirectResponse(url=url, status_code=status_code)
    for cookie in _set_cookies(headers_source):
        response.headers.append("set-cookie", cookie)
    return response
