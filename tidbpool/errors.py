"""Errors raised while turning configuration into a connection pool."""
from __future__ import annotations


class PoolError(Exception):
    """Base class for every failure surfaced by :mod:`tidbpool`."""

    default_stage = "config"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        self.stage = stage or self.default_stage
        super().__init__(f"[{self.stage}] {message}")


class ConfigError(PoolError):
    """A configuration value is missing, malformed or out of range."""


class DatabaseConnectionError(PoolError):
    """The database server could not be reached or refused the session."""

    default_stage = "connect"

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        is_authentication_failure: bool = False,
    ) -> None:
        self.is_authentication_failure = is_authentication_failure
        super().__init__(message, stage=stage)


class PoolInitError(PoolError):
    """The pool builder rejected the translated options."""

    default_stage = "pool-init"
