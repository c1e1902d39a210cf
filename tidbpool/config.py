"""Configuration objects describing the database and its connection pool."""
from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping

from .durations import format_duration, parse_duration
from .errors import ConfigError

DEFAULT_PORT = 4000

_MISSING = object()


_TRUTHY = {"1", "true", "t", "yes", "y", "on"}
_FALSY = {"0", "false", "f", "no", "n", "off"}


def _strtobool(value: str) -> bool:
    """Return ``True`` when *value* represents a truthy string."""

    return value.strip().lower() in _TRUTHY


def _snake_case(key: str) -> str:
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in key)


def _lookup(mapping: Mapping[str, Any], key: str, default: Any = _MISSING) -> Any:
    """Fetch ``key`` (camelCase) from ``mapping``, accepting its snake_case form."""

    if key in mapping:
        return mapping[key]
    snake = _snake_case(key)
    if snake in mapping:
        return mapping[snake]
    if default is _MISSING:
        raise ConfigError(f"Missing required setting '{key}'")
    return default


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be an integer, got {value!r}") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.strip().lower() not in _TRUTHY | _FALSY:
            raise ConfigError(f"'{key}' must be a boolean, got {value!r}")
        return _strtobool(value)
    raise ConfigError(f"'{key}' must be a boolean, got {value!r}")


def _as_str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a string, got {value!r}")
    return value


@dataclass(frozen=True)
class PoolOptions:
    """Tuning knobs handed to the connection pool."""

    max_connections: int = 10
    min_connections: int = 1
    acquire_timeout: timedelta = timedelta(seconds=30)
    idle_timeout: timedelta = timedelta(minutes=5)
    max_lifetime: timedelta = timedelta(minutes=30)
    is_lazy: bool = True
    statement_cache_capacity: int = 100

    def __post_init__(self) -> None:
        if self.max_connections < 1:
            raise ConfigError("maxConnections must be at least 1")
        if self.min_connections < 0:
            raise ConfigError("minConnections cannot be negative")
        if self.statement_cache_capacity < 0:
            raise ConfigError("statementCacheCapacity cannot be negative")
        for name in ("acquire_timeout", "idle_timeout", "max_lifetime"):
            if getattr(self, name) <= timedelta(0):
                raise ConfigError(f"{name} must be greater than zero")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "PoolOptions":
        """Build pool options from a ``poolOptions`` table, filling defaults."""

        payload = payload or {}
        defaults = cls()
        return cls(
            max_connections=_as_int(
                _lookup(payload, "maxConnections", defaults.max_connections),
                "maxConnections",
            ),
            min_connections=_as_int(
                _lookup(payload, "minConnections", defaults.min_connections),
                "minConnections",
            ),
            acquire_timeout=parse_duration(
                _lookup(payload, "acquireTimeout", defaults.acquire_timeout),
                field="acquireTimeout",
            ),
            idle_timeout=parse_duration(
                _lookup(payload, "idleTimeout", defaults.idle_timeout),
                field="idleTimeout",
            ),
            max_lifetime=parse_duration(
                _lookup(payload, "maxLifetime", defaults.max_lifetime),
                field="maxLifetime",
            ),
            is_lazy=_as_bool(_lookup(payload, "isLazy", defaults.is_lazy), "isLazy"),
            statement_cache_capacity=_as_int(
                _lookup(
                    payload, "statementCacheCapacity", defaults.statement_cache_capacity
                ),
                "statementCacheCapacity",
            ),
        )

    @classmethod
    def from_env(cls, prefix: str = "DB_POOL_") -> "PoolOptions":
        """Create pool options from environment variables."""

        payload: Dict[str, Any] = {}
        for key in (
            "maxConnections",
            "minConnections",
            "acquireTimeout",
            "idleTimeout",
            "maxLifetime",
            "isLazy",
            "statementCacheCapacity",
        ):
            value = os.getenv(f"{prefix}{_snake_case(key).upper()}")
            if value is not None:
                payload[key] = value
        return cls.from_mapping(payload)

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "maxConnections": self.max_connections,
            "minConnections": self.min_connections,
            "acquireTimeout": format_duration(self.acquire_timeout),
            "idleTimeout": format_duration(self.idle_timeout),
            "maxLifetime": format_duration(self.max_lifetime),
            "isLazy": self.is_lazy,
            "statementCacheCapacity": self.statement_cache_capacity,
        }


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection details for a MySQL compatible server such as TiDB."""

    host: str = "localhost"
    port: int | None = None
    username: str = ""
    password: str = ""
    database_name: str = ""
    pool_options: PoolOptions = field(default_factory=PoolOptions)
    ssl_ca: str | None = None

    def __post_init__(self) -> None:
        if self.port is not None and not 0 < self.port < 65536:
            raise ConfigError(f"port must be between 1 and 65535, got {self.port}")

    @property
    def resolved_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    @property
    def address(self) -> str:
        """Return ``host:port`` for the server, using the default port if unset."""

        return f"{self.host}:{self.resolved_port}"

    def redacted(self) -> "DatabaseConfig":
        """Return a copy safe for display, with the password masked."""

        return replace(self, password="***" if self.password else "")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "DatabaseConfig":
        """Build the configuration from a ``[database]`` table."""

        if not isinstance(payload, Mapping):
            raise ConfigError("The database section must be a table")

        port = _lookup(payload, "port", None)
        ssl_ca = _lookup(payload, "sslCa", None)
        pool_payload = _lookup(payload, "poolOptions", None)
        if pool_payload is not None and not isinstance(pool_payload, Mapping):
            raise ConfigError("poolOptions must be a table")

        return cls(
            host=_as_str(_lookup(payload, "host"), "host"),
            port=_as_int(port, "port") if port is not None else None,
            username=_as_str(_lookup(payload, "username"), "username"),
            password=_as_str(_lookup(payload, "password"), "password"),
            database_name=_as_str(_lookup(payload, "databaseName"), "databaseName"),
            ssl_ca=_as_str(ssl_ca, "sslCa") if ssl_ca is not None else None,
            pool_options=PoolOptions.from_mapping(pool_payload),
        )

    @classmethod
    def from_env(cls, prefix: str = "DB_") -> "DatabaseConfig":
        """Create a configuration from environment variables."""

        port = os.getenv(f"{prefix}PORT")
        return cls(
            host=os.getenv(f"{prefix}HOST", cls.host),
            port=_as_int(port, f"{prefix}PORT") if port else None,
            username=os.getenv(f"{prefix}USER", cls.username),
            password=os.getenv(f"{prefix}PASSWORD", cls.password),
            database_name=os.getenv(f"{prefix}NAME", cls.database_name),
            ssl_ca=os.getenv(f"{prefix}SSL_CA") or None,
            pool_options=PoolOptions.from_env(prefix=f"{prefix}POOL_"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        """Serialise back to the file layout, omitting unset optional keys."""

        payload: Dict[str, Any] = {"host": self.host}
        if self.port is not None:
            payload["port"] = self.port
        payload["username"] = self.username
        payload["password"] = self.password
        payload["databaseName"] = self.database_name
        if self.ssl_ca is not None:
            payload["sslCa"] = self.ssl_ca
        payload["poolOptions"] = self.pool_options.to_mapping()
        return payload


@dataclass(frozen=True)
class AppConfig:
    """Top level application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AppConfig":
        if "database" not in payload:
            raise ConfigError("Missing required section 'database'")
        return cls(database=DatabaseConfig.from_mapping(payload["database"]))

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create the configuration from environment variables."""

        return cls(database=DatabaseConfig.from_env())

    def to_mapping(self) -> Dict[str, Any]:
        return {"database": self.database.to_mapping()}


def load_config(path: str | Path) -> AppConfig:
    """Load an :class:`AppConfig` from a TOML or JSON file."""

    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in {".toml", ".json"}:
        raise ConfigError(f"Unsupported configuration format '{suffix or path.name}'")

    try:
        with path.open("rb") as handle:
            if suffix == ".toml":
                payload = tomllib.load(handle)
            else:
                payload = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file {path} does not exist") from exc
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Configuration file {path} is not valid: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError(f"Configuration file {path} must contain a table")
    return AppConfig.from_mapping(payload)
