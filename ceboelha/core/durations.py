"""Human readable duration strings such as ``15m`` or ``7d``."""

import re
from datetime import timedelta

DURATION_PATTERN = re.compile(r"^(\d+)(m|h|d)$")

_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_duration(value: str | timedelta) -> timedelta:
    """Parse a duration string into a timedelta.

    Args:
        value: A string like ``"15m"``, ``"12h"`` or ``"7d"``. Timedeltas are
            passed through unchanged.

    Returns:
        The parsed duration

    Raises:
        ValueError: If the string does not match ``<digits><m|h|d>`` or is zero
    """
    if isinstance(value, timedelta):
        return value

    match = DURATION_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(
            f"Invalid duration {value!r}: expected a number followed by m, h or d"
        )

    amount, unit = match.groups()
    duration = int(amount) * _UNITS[unit]
    if not duration:
        raise ValueError(f"Invalid duration {value!r}: must be greater than zero")
    return duration


def to_milliseconds(duration: timedelta) -> int:
    """Convert a timedelta into whole milliseconds."""
    return int(duration.total_seconds() * 1000)
