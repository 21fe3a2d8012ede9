import hashlib

import pytest
from fastapi import APIRouter, Request
from starlette.responses import Response

from servicekit.microservice import MicroService, RouteSpec, normalize_prefix


class _UpstreamTimeout(Exception):
    status_code = 504


async def get_item(item_id: int):
    return MicroService.reply_handler(None, {"id": item_id}, "max-age=30")


async def get_missing():
    return MicroService.reply_handler(None, None)


async def get_upstream():
    try:
        raise _UpstreamTimeout("inventory timed out")
    except _UpstreamTimeout as exc:
        return MicroService.reply_handler(exc, None)


async def get_failure():
    return {"success": False, "reason": "quota exceeded"}


async def get_crash():
    raise RuntimeError("handler crashed")


async def get_nested():
    return Response(b"[" * 5000 + b"]" * 5000, media_type="application/json")


async def get_login():
    return MicroService.redirect_handler("/api/items/1", {"set-cookie": "session=abc"})


async def get_context(request: Request):
    return MicroService.handle_context(request)


extra = APIRouter(prefix="/extra")


@extra.get("/ping")
async def ping():
    return {"pong": True}


@pytest.fixture
def service(settings, captured_logs, stats_source):
    _ = captured_logs
    service = MicroService("test-service", settings, stats_source=stats_source)
    service.add_routes(
        [
            RouteSpec("GET", "/items/{item_id}", get_item),
            RouteSpec("GET", "/missing", get_missing),
            RouteSpec("GET", "/upstream", get_upstream),
            RouteSpec("GET", "/failure", get_failure),
            RouteSpec("GET", "/crash", get_crash),
            RouteSpec("GET", "/nested", get_nested),
            RouteSpec("GET", "/login", get_login),
            RouteSpec("GET", "/context", get_context),
            extra,
        ]
    )
    yield service
    service.log.close()


def _outgoing(entries, path):
    return [e for e in entries if "response" in e and e["request"]["path"] == path]


@pytest.mark.parametrize(
    ("prefix", "expected"),
    [("api", "/api"), ("/api/", "/api"), ("", ""), (None, "")],
)
def test_normalize_prefix(prefix, expected) -> None:
    assert normalize_prefix(prefix) == expected


async def test_health_check_lives_under_prefix(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json() == {"statusCode": 200, "healthy": True}
    request_id = resp.headers["x-request-id"]
    [entry] = _outgoing(captured_logs, "/api/health")
    assert entry["log_level"] == "info"
    assert entry["request_id"] == request_id
    assert entry["response"]["headers"]["x-request-id"] == request_id


async def test_inbound_request_id_is_propagated(api_client) -> None:
    resp = await api_client.get("/api/context", headers={"x-request-id": "trace-me"})

    assert resp.headers["x-request-id"] == "trace-me"
    assert resp.json() == {"x-request-id": "trace-me"}


async def test_success_reply_carries_etag_and_cache_control(api_client) -> None:
    resp = await api_client.get("/api/items/5")

    assert resp.status_code == 200
    assert resp.json() == {"id": 5}
    assert resp.headers["content-type"] == "application/json"
    assert resp.headers["cache-control"] == "max-age=30"
    assert resp.headers["etag"] == f'"{hashlib.md5(resp.content).hexdigest()}"'


async def test_missing_data_is_a_logged_404(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/missing")

    assert resp.status_code == 404
    assert resp.json() == {"statusCode": 404, "error": "Not Found", "message": "Not Found"}
    [entry] = _outgoing(captured_logs, "/api/missing")
    assert entry["log_level"] == "warning"
    assert "stack" not in entry["error"]


async def test_unknown_route_is_a_framework_error(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/nowhere")

    assert resp.status_code == 404
    assert "x-request-id" in resp.headers
    [entry] = _outgoing(captured_logs, "/api/nowhere")
    assert entry["log_level"] == "warning"


async def test_upstream_failures_become_503(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/upstream")

    assert resp.status_code == 503
    assert resp.json()["message"] == "inventory timed out"
    [entry] = _outgoing(captured_logs, "/api/upstream")
    assert entry["log_level"] == "error"
    assert entry["response"]["statusCode"] == 503
    assert "Caused by: Traceback" in entry["error"]["stack"]
    assert "_UpstreamTimeout: inventory timed out" in entry["error"]["stack"]


async def test_business_failure_is_logged_as_error(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/failure")

    assert resp.status_code == 200
    [entry] = _outgoing(captured_logs, "/api/failure")
    assert entry["log_level"] == "error"
    assert entry["error"] == {"success": False, "reason": "quota exceeded"}


async def test_unhandled_exception_is_a_500_with_request_id(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/crash", headers={"x-request-id": "crash-1"})

    assert resp.status_code == 500
    assert resp.headers["x-request-id"] == "crash-1"
    assert resp.json()["message"] == "An internal server error occurred"
    [entry] = _outgoing(captured_logs, "/api/crash")
    assert entry["log_level"] == "error"
    assert "RuntimeError: handler crashed" in entry["error"]["stack"]


async def test_validation_errors_are_client_errors(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/items/not-a-number")

    assert resp.status_code == 422
    assert resp.json()["validation"]
    [entry] = _outgoing(captured_logs, "/api/items/not-a-number")
    assert entry["log_level"] == "warning"


async def test_redirect_forwards_cookie(api_client) -> None:
    resp = await api_client.get("/api/login")

    assert resp.status_code == 302
    assert resp.headers["location"] == "/api/items/1"
    assert resp.headers["set-cookie"] == "session=abc"
    assert "x-request-id" in resp.headers


async def test_routers_are_mounted_under_prefix(api_client) -> None:
    resp = await api_client.get("/api/extra/ping")
    assert resp.status_code == 200
    assert resp.json() == {"pong": True}


async def test_health_check_is_registered_once(service, api_client) -> None:
    service.add_routes([])
    service.add_routes([])
    service.server.openapi_schema = None

    paths = service.server.openapi()["paths"]
    assert [path for path in paths if path.endswith("/health")] == ["/api/health"]
    assert list(paths["/api/health"]) == ["get"]
    resp = await api_client.get("/api/health")
    assert resp.status_code == 200


async def test_cors_preflight_is_logged(api_client, captured_logs) -> None:
    resp = await api_client.options(
        "/api/health",
        headers={"origin": "http://example.com", "access-control-request-method": "GET"},
    )

    assert resp.status_code == 200
    assert "x-request-id" in resp.headers
    assert _outgoing(captured_logs, "/api/health")


def test_handle_context_without_request_generates_id() -> None:
    headers = MicroService.handle_context()
    assert headers["x-request-id"]


async def test_deeply_nested_json_body_is_still_logged(api_client, captured_logs) -> None:
    resp = await api_client.get("/api/nested")

    assert resp.status_code == 200
    [entry] = _outgoing(captured_logs, "/api/nested")
    assert entry["log_level"] == "info"
    assert entry["response"]["statusCode"] == 200


async def test_matching_if_none_match_is_not_modified(api_client, captured_logs) -> None:
    first = await api_client.get("/api/items/5")
    etag = first.headers["etag"]

    resp = await api_client.get("/api/items/5", headers={"if-none-match": etag})

    assert resp.status_code == 304
    assert resp.content == b""
    assert resp.headers["etag"] == etag
    assert resp.headers["cache-control"] == "max-age=30"
    assert "x-request-id" in resp.headers
    entries = _outgoing(captured_logs, "/api/items/5")
    assert [e["response"]["statusCode"] for e in entries] == [200, 304]
    assert entries[-1]["log_level"] == "info"


async def test_stale_if_none_match_gets_the_full_body(api_client) -> None:
    resp = await api_client.get("/api/items/5", headers={"if-none-match": '"stale"'})

    assert resp.status_code == 200
    assert resp.json() == {"id": 5}
