"""Utility functions for time handling."""

import re
import time

from distlimit.exceptions import InvalidArgumentError

_DURATION_RE = re.compile(r"^\s*(\d+)\s?(ms|s|m|h|d)\s*$")

_UNIT_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}


def now_ms() -> int:
    """Current unix time in milliseconds."""
    return int(time.time() * 1000)


def ms(duration: int | str) -> int:
    """Convert a duration to milliseconds.

    Args:
        duration: Either a positive integer number of milliseconds or a string
            such as ``"10 s"``, ``"30m"`` or ``"1 h"``.

    Returns:
        The duration in milliseconds.

    Raises:
        InvalidArgumentError: If the duration is not positive or cannot be parsed.

    Examples:
        >>> ms("10 s")
        10000
        >>> ms(250)
        250
    """
    if isinstance(duration, bool):
        raise InvalidArgumentError(f"Invalid duration: {duration!r}")
    if isinstance(duration, int):
        if duration <= 0:
            raise InvalidArgumentError(f"Duration must be positive, got {duration}")
        return duration

    match = _DURATION_RE.match(str(duration))
    if match is None:
        raise InvalidArgumentError(
            f"Unable to parse duration {duration!r}, expected e.g. '10 s' or '500ms'"
        )
    value = int(match.group(1))
    if value <= 0:
        raise InvalidArgumentError(f"Duration must be positive, got {duration!r}")
    return value * _UNIT_MS[match.group(2)]
