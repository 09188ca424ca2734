"""
CLI for launching the control API server.

Usage:
    sync-serve
    sync-serve --port 8080 --host 127.0.0.1
"""

import argparse
import sys

import uvicorn

from .config import load_settings
from .telemetry import configure_logging, get_logger

logger = get_logger(__name__)


def main(argv=None):
    settings = load_settings()

    parser = argparse.ArgumentParser(
        description="Launch the entity sync engine API server"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=settings.server.host,
        help="Host to bind to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.server.port,
        help="Port to bind to",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.server.log_level,
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )

    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logger.info("server_starting", host=args.host, port=args.port)
    print(f"API documentation available at: http://localhost:{args.port}/docs")

    uvicorn.run(
        "sync_engine.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
