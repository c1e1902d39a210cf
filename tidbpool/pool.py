"""Create a SQLAlchemy asyncio connection pool from a :class:`DatabaseConfig`.

The pool itself (queuing, pre-ping, recycling, statement caching) belongs to
SQLAlchemy. This module only composes the connection URL, translates
:class:`PoolOptions` into engine arguments, wires the optional CA bundle and
reports what happened.
"""
from __future__ import annotations

import logging
import ssl
import time
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator

from pymysql.constants import ER
from sqlalchemy import event
from sqlalchemy.engine import URL
from sqlalchemy.exc import ArgumentError, DBAPIError, DisconnectionError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .config import DatabaseConfig, PoolOptions
from .errors import ConfigError, DatabaseConnectionError, PoolError, PoolInitError
from .tls import build_ssl_context

logger = logging.getLogger(__name__)

DRIVERNAME = "mysql+aiomysql"

AUTHENTICATION_ERROR_CODES = frozenset(
    {ER.ACCESS_DENIED_ERROR, ER.DBACCESS_DENIED_ERROR}
)

_CHECKED_IN_AT = "tidbpool_checked_in_at"

EngineFactory = Callable[..., AsyncEngine]


def build_database_url(config: DatabaseConfig) -> URL:
    """Return the ``mysql+aiomysql`` URL for ``config``.

    :meth:`URL.create` takes the raw credentials, so special characters in the
    user name or password are escaped when the URL is rendered.
    """

    return URL.create(
        DRIVERNAME,
        username=config.username,
        password=config.password,
        host=config.host,
        port=config.resolved_port,
        database=config.database_name or None,
    )


def build_engine_options(options: PoolOptions) -> Dict[str, Any]:
    """Translate :class:`PoolOptions` into :func:`create_async_engine` arguments."""

    if options.min_connections > options.max_connections:
        raise PoolInitError(
            f"minConnections ({options.min_connections}) exceeds "
            f"maxConnections ({options.max_connections})"
        )

    return {
        "pool_size": options.max_connections,
        "max_overflow": 0,
        "pool_timeout": options.acquire_timeout.total_seconds(),
        "pool_recycle": int(options.max_lifetime.total_seconds()),
        "pool_pre_ping": True,
        "query_cache_size": options.statement_cache_capacity,
    }


def build_connect_args(config: DatabaseConfig) -> Dict[str, Any]:
    """Return driver arguments; only TLS is configured here."""

    if config.ssl_ca is None:
        return {}
    return {"ssl": build_ssl_context(config.ssl_ca)}


class IdleConnectionReaper:
    """Discard pooled connections that stayed checked in longer than ``idle_timeout``.

    The check happens when a connection is checked out again. Raising
    :class:`DisconnectionError` from the ``checkout`` event makes the pool
    drop the connection and open a fresh one.
    """

    def __init__(
        self, idle_timeout: timedelta, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._limit = idle_timeout.total_seconds()
        self._clock = clock

    def on_checkin(self, dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info[_CHECKED_IN_AT] = self._clock()

    def on_checkout(
        self, dbapi_connection: Any, connection_record: Any, connection_proxy: Any
    ) -> None:
        checked_in_at = connection_record.info.pop(_CHECKED_IN_AT, None)
        if checked_in_at is None:
            return
        idle_for = self._clock() - checked_in_at
        if idle_for > self._limit:
            logger.debug("Discarding connection idle for %.1fs", idle_for)
            raise DisconnectionError(f"Connection idle for {idle_for:.1f}s")


def install_idle_eviction(engine: AsyncEngine, idle_timeout: timedelta) -> IdleConnectionReaper:
    reaper = IdleConnectionReaper(idle_timeout)
    event.listen(engine.sync_engine, "checkin", reaper.on_checkin)
    event.listen(engine.sync_engine, "checkout", reaper.on_checkout)
    return reaper


def log_pool_settings(options: PoolOptions) -> None:
    logger.info("Pool settings:")
    logger.info("-> Max connections: %d", options.max_connections)
    logger.info("-> Min connections: %d", options.min_connections)
    logger.info("-> Acquire timeout: %s", options.acquire_timeout)
    logger.info("-> Idle timeout: %s", options.idle_timeout)
    logger.info("-> Max lifetime: %s", options.max_lifetime)
    logger.info("-> Statement cache capacity: %d", options.statement_cache_capacity)


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and everything it wraps: driver ``orig``, causes, contexts."""

    seen = set()
    pending: list = [exc]
    while pending:
        current = pending.pop()
        if not isinstance(current, BaseException) or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.extend(
            [current.__context__, current.__cause__, getattr(current, "orig", None)]
        )


def _mysql_error_code(exc: BaseException) -> int | None:
    for candidate in _iter_causes(exc):
        args = getattr(candidate, "args", ())
        if args and isinstance(args[0], int):
            return args[0]
    return None


def classify_connection_error(exc: BaseException) -> DatabaseConnectionError:
    """Wrap a driver failure in :class:`DatabaseConnectionError`."""

    code = _mysql_error_code(exc)
    if any(isinstance(cause, ssl.SSLError) for cause in _iter_causes(exc)):
        return DatabaseConnectionError(f"TLS handshake failed: {exc}", stage="tls")
    if code in AUTHENTICATION_ERROR_CODES:
        return DatabaseConnectionError(
            f"Authentication rejected by server: {exc}",
            is_authentication_failure=True,
        )
    return DatabaseConnectionError(f"Could not connect to database server: {exc}")


async def _prewarm(engine: AsyncEngine, count: int) -> None:
    """Open ``count`` connections at once, then hand them back to the pool."""

    async with AsyncExitStack() as stack:
        for _ in range(count):
            await stack.enter_async_context(engine.connect())


async def create_connection_pool(
    config: DatabaseConfig,
    *,
    engine_factory: EngineFactory = create_async_engine,
) -> AsyncEngine:
    """Create a connection pool configured from ``config``.

    Each call returns a new engine. When ``config.pool_options.is_lazy`` is
    false, ``min_connections`` connections are opened before returning.

    Raises :class:`ConfigError`, :class:`PoolInitError` or
    :class:`DatabaseConnectionError`; nothing is retried.
    """

    try:
        return await _create_connection_pool(config, engine_factory)
    except PoolError as exc:
        logger.error(
            "Failed to create database connection pool for '%s' at stage %s: %s",
            config.address,
            exc.stage,
            exc,
        )
        raise


async def _create_connection_pool(
    config: DatabaseConfig, engine_factory: EngineFactory
) -> AsyncEngine:
    if not config.host:
        raise ConfigError("host must not be empty")

    url = build_database_url(config)
    logger.info(
        "Initializing database connection pool for %s",
        url.render_as_string(hide_password=True),
    )

    pool_options = config.pool_options
    options = build_engine_options(pool_options)
    connect_args = build_connect_args(config)
    if connect_args:
        options["connect_args"] = connect_args
    log_pool_settings(pool_options)

    try:
        engine = engine_factory(url, **options)
    except (ArgumentError, TypeError, ValueError) as exc:
        raise PoolInitError(f"Pool builder rejected the options: {exc}") from exc

    install_idle_eviction(engine, pool_options.idle_timeout)

    logger.info("Connecting to the database... Lazy mode: %s", pool_options.is_lazy)
    if not pool_options.is_lazy:
        try:
            await _prewarm(engine, pool_options.min_connections)
        except (DBAPIError, OSError) as exc:
            await engine.dispose()
            raise classify_connection_error(exc) from exc

    logger.info("Database connection pool initialized successfully.")
    return engine
