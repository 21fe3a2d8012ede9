"""Request lifecycle logging.

Request ids, structlog-bound per-request loggers, event-loop lag and GC
samples. Everything is captured in memory and forwarded straight to the log
sink.
"""

from servicekit.observability.context import RequestContext, SupportsChildScope
from servicekit.observability.errors import full_stack, serialize_error
from servicekit.observability.gc_stats import GcStatsSource
from servicekit.observability.lag import LagSampler
from servicekit.observability.logging import configure_logging
from servicekit.observability.middleware import RequestLoggingMiddleware
from servicekit.observability.request_logger import RequestLogger

__all__ = [
    "GcStatsSource",
    "LagSampler",
    "RequestContext",
    "RequestLogger",
    "RequestLoggingMiddleware",
    "SupportsChildScope",
    "configure_logging",
    "full_stack",
    "serialize_error",
]
