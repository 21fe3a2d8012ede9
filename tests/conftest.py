from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from typing import Any, Callable

import pytest
import structlog
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from servicekit.config import Settings, get_settings
from servicekit.observability.request_logger import RequestLogger


class FakeStatsSource:
    def __init__(self) -> None:
        self.callbacks: list[Callable[[dict[str, Any]], None]] = []

    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        self.callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return unsubscribe

    def emit(self, sample: dict[str, Any]) -> None:
        for callback in list(self.callbacks):
            callback(sample)


def make_request(
    path: str = "/items/1",
    method: str = "GET",
    headers: dict[str, str] | None = None,
    query: str = "",
    path_params: dict[str, Any] | None = None,
) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "server": ("test", 80),
        "client": ("127.0.0.1", 50000),
        "root_path": "",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query.encode(),
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "path_params": path_params or {},
    }
    return Request(scope)


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("SERVICE_NAME", "test-service")
    monkeypatch.setenv("LOG_LEVEL", "info")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def captured_logs() -> Iterator[list[dict[str, Any]]]:
    with structlog.testing.capture_logs() as entries:
        yield entries


@pytest.fixture
def stats_source() -> FakeStatsSource:
    return FakeStatsSource()


@pytest.fixture
def request_logger(captured_logs, stats_source: FakeStatsSource) -> Iterator[RequestLogger]:
    _ = captured_logs
    logger = RequestLogger(
        {"name": "test-service", "process": "test-process", "level": "info"},
        stats_source=stats_source,
    )
    yield logger
    logger.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(route_prefix="api", log_level="info")


@pytest.fixture
async def api_client(service) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=service.server, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
