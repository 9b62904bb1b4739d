"""
Hub server entry point.

Usage:
    NEOLOC_JWT_SECRET=... python -m neoloc [--host HOST] [--port PORT] [--database PATH]
"""

import argparse
import sys

from aiohttp import web
from loguru import logger

from neoloc.api.app import create_app
from neoloc.auth.secret_store import SecretNotFound
from neoloc.config import HubSettings
from neoloc.hub import bootstrap, create_hub


def main():
    parser = argparse.ArgumentParser(description="NeoLoc Hub Server")
    parser.add_argument(
        "--host",
        default=None,
        help="Bind address (default: NEOLOC_HOST or 0.0.0.0)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port (default: NEOLOC_PORT or 5000)"
    )
    parser.add_argument(
        "--database",
        default=None,
        help="SQLite database path (default: NEOLOC_DATABASE_PATH, in-memory if unset)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: NEOLOC_LOG_LEVEL or INFO)"
    )
    args = parser.parse_args()

    overrides = {
        name: value
        for name, value in (
            ("host", args.host),
            ("port", args.port),
            ("database_path", args.database),
            ("log_level", args.log_level),
        )
        if value is not None
    }

    try:
        settings = HubSettings.from_env(**overrides)
    except SecretNotFound as e:
        logger.error(f"Refusing to start: {e}")
        sys.exit(1)

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())

    hub = create_hub(settings)
    bootstrap(hub)

    storage = settings.database_path or "memory"
    logger.info(f"Starting NeoLoc hub on {settings.host}:{settings.port} (storage: {storage})")

    web.run_app(create_app(hub), host=settings.host, port=settings.port, print=None)
    logger.info("Server stopped")


if __name__ == "__main__":
    main()
