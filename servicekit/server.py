from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from servicekit.exceptions import ServiceError, wrap_error
from servicekit.observability.middleware import RequestLoggingMiddleware
from servicekit.observability.request_logger import RequestLogger

CORS_HEADERS = ["Authorization", "Content-Type", "If-None-Match"]


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    request.state.error = exc
    return exc.to_response()


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error = wrap_error(exc, exc.status_code, str(exc.detail), headers=exc.headers)
    request.state.error = error
    return error.to_response()


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    error = wrap_error(exc, 422, "Invalid request input")
    error.data = {"errors": errors}
    request.state.error = error
    return JSONResponse({**error.payload(), "validation": errors}, status_code=422)


def create_server(
    logger: RequestLogger,
    *,
    title: str = "service",
    version: str = "0.1.0",
    cors_origins: list[str] | None = None,
    debug: bool = False,
) -> FastAPI:
    """Build a FastAPI app whose every request goes through ``logger``."""

    app = FastAPI(title=title, version=version, debug=debug)

    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_headers=CORS_HEADERS,
        allow_credentials=True,
        allow_methods=["*"],
    )
    # Added last so it wraps CORS and sees preflight responses too.
    app.add_middleware(RequestLoggingMiddleware, logger=logger)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        logger.close()

    return app
