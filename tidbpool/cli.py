"""Command line check that builds a pool from configuration and pings the server."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from .config import AppConfig, load_config
from .env_loader import load_dotenv_if_available
from .errors import ConfigError, PoolError
from .pool import classify_connection_error, create_connection_pool

EXIT_CONFIG_ERROR = 1
EXIT_CONNECTION_ERROR = 2


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build a TiDB/MySQL connection pool from configuration and ping the server.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a TOML or JSON settings file. Defaults to DB_* environment variables.",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Optional .env file loaded before reading the environment.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    parser.add_argument(
        "--eager",
        action="store_true",
        help="Open minConnections connections up front regardless of isLazy.",
    )
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print the resolved configuration with the password masked and exit.",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def resolve_config(args: argparse.Namespace) -> AppConfig:
    if args.config is not None:
        config = load_config(args.config)
    else:
        load_dotenv_if_available(args.env_file)
        config = AppConfig.from_env()

    if args.eager:
        database = config.database
        config = replace(
            config,
            database=replace(
                database, pool_options=replace(database.pool_options, is_lazy=False)
            ),
        )
    return config


async def ping(config: AppConfig) -> str:
    """Build the pool, run ``SELECT VERSION()`` and dispose of the pool."""

    engine = await create_connection_pool(config.database)
    try:
        async with engine.connect() as connection:
            result = await connection.execute(text("SELECT VERSION()"))
            return str(result.scalar_one())
    except (DBAPIError, OSError) as exc:
        raise classify_connection_error(exc) from exc
    finally:
        await engine.dispose()


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = resolve_config(args)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.show_config:
        redacted = replace(config, database=config.database.redacted())
        print(json.dumps(redacted.to_mapping(), indent=2))
        return 0

    try:
        version = asyncio.run(ping(config))
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except PoolError as exc:
        print(f"Database check failed: {exc}", file=sys.stderr)
        return EXIT_CONNECTION_ERROR

    print(f"Connected to {config.database.address} (server version {version})")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
