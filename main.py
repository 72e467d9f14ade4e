"""Command-line interface for the users API service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Sequence

from dotenv import load_dotenv

from userapi.config import Settings, load_settings, resolve_config_path
from userapi.database import Database
from userapi.errors import DatabaseError, StartupError

logger = logging.getLogger("userapi.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERAPI_CONFIG or config/userapi.yaml)",
    )

    parser = argparse.ArgumentParser(description="Users API service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve", config=None)

    subparsers.add_parser(
        "init-db", parents=[common], help="Initialise the schema and apply pending migrations, then exit"
    )

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: HOST or 0.0.0.0)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (default: PORT or 3000)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _load_settings(config: str | None) -> Settings:
    config_path = resolve_config_path(config or os.getenv("USERAPI_CONFIG"))
    return load_settings(config_path=config_path)


async def _prepare_database(settings: Settings) -> Database:
    """Open the pool, then create the schema and apply migrations."""

    database = Database(settings.database_url, pool_config=settings.pool)
    try:
        await database.open()
        await database.initialize()
        await database.apply_migrations(settings.migrations_dir)
    except (DatabaseError, StartupError):
        await database.close()
        raise
    return database


async def _serve(settings: Settings, *, host: str, port: int) -> None:
    from userapi.service import create_app
    import uvicorn

    database = await _prepare_database(settings)
    try:
        app = create_app(database=database, trusted_proxies=settings.trusted_proxies)
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info",
            proxy_headers=False,
        )
        server = uvicorn.Server(config)
        logger.info("Server running on port %s", port)
        logger.info("Environment: %s", settings.environment)
        await server.serve()
    finally:
        await database.close()


async def _init_db(settings: Settings) -> None:
    database = await _prepare_database(settings)
    await database.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    try:
        settings = _load_settings(args.config)
    except (StartupError, ValueError) as exc:
        logger.error("Failed to start server: %s", exc)
        return 1

    try:
        if args.command == "serve":
            asyncio.run(
                _serve(
                    settings,
                    host=args.host or settings.host,
                    port=args.port or settings.port,
                )
            )
        elif args.command == "init-db":
            asyncio.run(_init_db(settings))
            print("Database initialisation complete.")
    except (StartupError, DatabaseError) as exc:
        logger.error("Failed to start server: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
