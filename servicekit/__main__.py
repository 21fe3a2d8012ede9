from __future__ import annotations

import argparse

from servicekit.config import get_settings
from servicekit.microservice import MicroService


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a bare service exposing only its health check")
    parser.add_argument("--name", default=None, help="Service name (defaults to SERVICE_NAME)")
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument("--prefix", default=None, help="Route prefix for every route")
    parser.add_argument("--log-level", default=None, help="trace, debug, info, warn, error or fatal")
    args = parser.parse_args()

    overrides = {
        "host": args.host,
        "port": args.port,
        "route_prefix": args.prefix,
        "log_level": args.log_level,
    }
    settings = get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})

    service = MicroService(args.name or settings.service_name, settings)
    service.add_routes([])
    service.run()


if __name__ == "__main__":
    main()
