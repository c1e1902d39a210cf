"""Human readable durations such as ``"30s"`` or ``"5m"``."""
from __future__ import annotations

import re
from datetime import timedelta

from .errors import ConfigError

_DURATION_PATTERN = re.compile(r"^(?P<amount>[0-9]+)(?P<unit>[smhd])$")

_UNIT_SECONDS = {
    "d": 86400,
    "h": 3600,
    "m": 60,
    "s": 1,
}


def parse_duration(value: object, *, field: str = "duration") -> timedelta:
    """Return ``value`` as a positive :class:`~datetime.timedelta`.

    Strings must look like ``<integer><unit>`` where unit is one of ``s``,
    ``m``, ``h`` or ``d``. Integers are taken as seconds and ``timedelta``
    instances are passed through.
    """

    if isinstance(value, bool):
        raise ConfigError(f"{field} must be a duration, got {value!r}", stage="parse")

    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, int):
        try:
            duration = timedelta(seconds=value)
        except OverflowError as exc:
            raise ConfigError(f"{field} is out of range, got {value!r}", stage="parse") from exc
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value.strip())
        if match is None:
            raise ConfigError(
                f"{field} must look like '<number><s|m|h|d>', got {value!r}",
                stage="parse",
            )
        amount = int(match.group("amount"))
        try:
            duration = timedelta(seconds=amount * _UNIT_SECONDS[match.group("unit")])
        except OverflowError as exc:
            raise ConfigError(f"{field} is out of range, got {value!r}", stage="parse") from exc
    else:
        raise ConfigError(f"{field} must be a duration, got {value!r}", stage="parse")

    if duration <= timedelta(0):
        raise ConfigError(f"{field} must be greater than zero", stage="parse")
    return duration


def format_duration(value: timedelta) -> str:
    """Render ``value`` with the largest unit that divides it exactly."""

    seconds = int(value.total_seconds())
    if seconds <= 0 or seconds != value.total_seconds():
        raise ValueError(f"Cannot format {value!r} as a whole-second duration")
    for unit, size in _UNIT_SECONDS.items():
        if seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"  # pragma: no cover - "s" always divides
