"""Utility functions for quotaguard."""

import re

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value: str | int | float) -> float:
    """Parse a window duration into seconds.

    Accepts plain numbers (seconds) or strings such as "60 s", "500ms",
    "1m", "2 h" and "1d".

    Examples:
        >>> parse_duration("60 s")
        60.0
        >>> parse_duration("1m")
        60.0
        >>> parse_duration(30)
        30.0

    Raises:
        ValueError: If the value cannot be parsed or is not positive.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_PATTERN.match(value)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        seconds = float(amount) * _UNIT_SECONDS[unit]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


def window_index(now: float, window_seconds: float) -> int:
    """Return the fixed window number containing ``now`` (epoch seconds)."""
    window_ms = int(window_seconds * 1000)
    return int(now * 1000) // window_ms


def window_reset_at(now: float, window_seconds: float) -> float:
    """Return the epoch-seconds end of the fixed window containing ``now``."""
    window_ms = int(window_seconds * 1000)
    return ((window_index(now, window_seconds) + 1) * window_ms) / 1000.0
