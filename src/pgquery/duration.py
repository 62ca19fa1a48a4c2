"""Durations: milliseconds, or strings such as ``"500ms"``, ``"1.5s"``, ``"5m"``."""

import math
import re

Duration = str | int | float  # "30s", "1.5h", "inf" or milliseconds

INFINITY = math.inf

_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$")
_MS_PER_UNIT: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}


def parse_duration(duration: Duration) -> float:
    """Resolve ``duration`` to milliseconds.

    Numbers pass through unchanged. ``"inf"`` (or ``math.inf``) means never:
    never stale, never collected. Negative, NaN and boolean values are
    rejected with ``ValueError``.
    """
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, (int, float)):
        if math.isnan(duration) or duration < 0:
            raise ValueError(f"Invalid duration: {duration!r}")
        return duration
    if duration.strip().lower() in ("inf", "infinity"):
        return INFINITY

    match = _PATTERN.match(duration)
    if match is None:
        raise ValueError(f"Invalid duration: {duration!r}")
    amount, unit = match.groups()
    ms = float(amount) * _MS_PER_UNIT[unit]
    return int(ms) if ms.is_integer() else ms


__all__ = ["INFINITY", "Duration", "parse_duration"]
