from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable

import uvicorn
from fastapi import APIRouter, FastAPI
from starlette.requests import Request

from servicekit import __version__
from servicekit.config import Settings, get_settings
from servicekit.observability.context import RequestContext
from servicekit.observability.gc_stats import GcStatsSource, StatsSource
from servicekit.observability.logging import configure_logging
from servicekit.observability.request_logger import REQUEST_ID_HEADER, RequestLogger
from servicekit.replies import redirect, reply
from servicekit.server import create_server


@dataclass
class RouteSpec:
    method: str
    path: str
    handler: Callable[..., Any]
    options: dict[str, Any] = field(default_factory=dict)


def normalize_prefix(prefix: str | None) -> str:
    prefix = (prefix or "").strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"
    return prefix


async def health() -> dict[str, Any]:
    return {"statusCode": 200, "healthy": True}


class MicroService:
    """A FastAPI service with request logging, a health check and prefixed routes."""

    reply_handler = staticmethod(reply)
    redirect_handler = staticmethod(redirect)

    def __init__(
        self,
        name: str,
        settings: Settings | None = None,
        *,
        stats_source: StatsSource | None = None,
    ) -> None:
        self.name = name
        self.settings = settings or get_settings()
        self.log = RequestLogger(
            self.settings.log_options(name),
            lag_probe_interval=self.settings.lag_probe_interval,
            unresponsive_timeout=self.settings.unresponsive_timeout,
            stats_source=stats_source if stats_source is not None else GcStatsSource(),
        )
        self.server: FastAPI = create_server(
            self.log,
            title=name,
            version=__version__,
            cors_origins=self.settings.cors_origins,
        )
        self.route_prefix = normalize_prefix(self.settings.route_prefix)
        self.health_check_path = "/" + self.settings.health_check_path.lstrip("/")
        self._health_registered = False
        self._uvicorn: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

    def add_routes(self, routes: Iterable[APIRouter | RouteSpec]) -> APIRouter:
        """Register ``routes`` (and the health check, once) under the route prefix."""

        router = APIRouter(prefix=self.route_prefix)
        for route in routes:
            if isinstance(route, APIRouter):
                router.include_router(route)
            else:
                router.add_api_route(route.path, route.handler, methods=[route.method.upper()], **route.options)

        if not self._health_registered:
            router.add_api_route(self.health_check_path, health, methods=["GET"], name="health")
            self._health_registered = True

        self.server.include_router(router)
        return router

    async def start(self) -> None:
        configure_logging(self.settings.log_level)
        config = uvicorn.Config(
            self.server,
            host=self.settings.host,
            port=self.settings.port,
            log_config=None,
        )
        self._uvicorn = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._serve(self._uvicorn))

        while not self._uvicorn.started and not self._serve_task.done():
            await asyncio.sleep(0.05)

        if not self._uvicorn.started:
            error = self._serve_task.exception() or RuntimeError(f"{self.name} stopped during startup")
            self._uvicorn = None
            self._serve_task = None
            self.log.log_error(f"{self.name} failed to start", error)
            raise error

        self.log.log_info(
            f"{self.name} Server Started",
            {"port": self.settings.port, "prefix": self.route_prefix},
        )

    async def _serve(self, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind.
            raise RuntimeError(f"{self.name} server exited with code {exc.code}") from None

    async def stop(self) -> None:
        if self._uvicorn is None or self._serve_task is None:
            return
        self._uvicorn.should_exit = True
        await self._serve_task
        self._uvicorn = None
        self._serve_task = None

    def run(self) -> None:
        """Blocking entry point: configure JSON logging and serve until interrupted."""

        configure_logging(self.settings.log_level)
        uvicorn.run(self.server, host=self.settings.host, port=self.settings.port, log_config=None)

    @staticmethod
    def handle_context(request: Request | None = None) -> dict[str, str]:
        """Headers to forward on outbound calls made while serving ``request``."""

        if request is not None:
            context = getattr(request.state, "context", None)
            if context is not None:
                return {REQUEST_ID_HEADER: context.id}
            incoming = request.headers.get(REQUEST_ID_HEADER)
            if incoming:
                return {REQUEST_ID_HEADER: incoming}
        return {REQUEST_ID_HEADER: RequestContext.create().id}
