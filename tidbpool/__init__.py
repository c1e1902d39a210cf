"""Build TiDB/MySQL connection pools from declarative configuration."""
from __future__ import annotations

from .config import DEFAULT_PORT, AppConfig, DatabaseConfig, PoolOptions, load_config
from .durations import format_duration, parse_duration
from .errors import ConfigError, DatabaseConnectionError, PoolError, PoolInitError
from .pool import create_connection_pool

__all__ = [
    "DEFAULT_PORT",
    "AppConfig",
    "ConfigError",
    "DatabaseConfig",
    "DatabaseConnectionError",
    "PoolError",
    "PoolInitError",
    "PoolOptions",
    "create_connection_pool",
    "format_duration",
    "load_config",
    "parse_duration",
]
