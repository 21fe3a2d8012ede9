"""Logging, health checks and error mapping for small FastAPI services."""

__version__ = "0.1.0"

from servicekit.exceptions import ClientError, ServerError, ServiceError  # noqa: E402
from servicekit.microservice import MicroService, RouteSpec  # noqa: E402
from servicekit.replies import decide, redirect, reply  # noqa: E402

__all__ = [
    "ClientError",
    "MicroService",
    "RouteSpec",
    "ServerError",
    "ServiceError",
    "__version__",
    "decide",
    "redirect",
    "reply",
]
