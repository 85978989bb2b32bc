"""
Human-readable duration parsing.

Durations are always relative elapsed time in integer milliseconds. Values
may be given pre-resolved (int) or as strings such as "100ms", "10s",
"1.5h" or "2 days". Unresolvable input is never fatal: callers resolve it
to a documented default via resolve_duration().

Examples:
    parse_duration("10s")       -> 10000
    parse_duration("1.5 hours") -> 5400000
    parse_duration("250")       -> 250
    parse_duration("soon")      -> None
    format_duration(60000)      -> "1m"
"""

import logging
import math
import re
from typing import Optional, Union

logger = logging.getLogger(__name__)

# Unit sizes in milliseconds
SECOND = 1000
MINUTE = SECOND * 60
HOUR = MINUTE * 60
DAY = HOUR * 24
WEEK = DAY * 7
YEAR = DAY * 365.25

# Documented fallbacks for unresolvable input
DEFAULT_DURATION_MS = 0
DEFAULT_ENDING_MS = 5000
DEFAULT_REFRESH_MS = 10

MAX_INPUT_LENGTH = 100

_DURATION_RE = re.compile(
    r'^(?P<value>-?(?:\d+)?\.?\d+) *'
    r'(?P<unit>milliseconds?|msecs?|ms|seconds?|secs?|s|minutes?|mins?|m'
    r'|hours?|hrs?|h|days?|d|weeks?|w|years?|yrs?|y)?$',
    re.IGNORECASE
)

_UNIT_MS = {
    'years': YEAR, 'year': YEAR, 'yrs': YEAR, 'yr': YEAR, 'y': YEAR,
    'weeks': WEEK, 'week': WEEK, 'w': WEEK,
    'days': DAY, 'day': DAY, 'd': DAY,
    'hours': HOUR, 'hour': HOUR, 'hrs': HOUR, 'hr': HOUR, 'h': HOUR,
    'minutes': MINUTE, 'minute': MINUTE, 'mins': MINUTE, 'min': MINUTE, 'm': MINUTE,
    'seconds': SECOND, 'second': SECOND, 'secs': SECOND, 'sec': SECOND, 's': SECOND,
    'milliseconds': 1, 'millisecond': 1, 'msecs': 1, 'msec': 1, 'ms': 1,
}

DurationLike = Union[int, float, str, None]


def parse_duration(value: DurationLike) -> Optional[int]:
    """
    Resolve a duration to non-negative integer milliseconds.

    Args:
        value: int/float milliseconds or a human-readable string

    Returns:
        Milliseconds, or None if the value cannot be resolved
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            return None
        return int(value)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text or len(text) > MAX_INPUT_LENGTH:
        return None

    match = _DURATION_RE.match(text)
    if not match:
        return None

    amount = float(match.group('value'))
    unit = (match.group('unit') or 'ms').lower()
    result = amount * _UNIT_MS[unit]
    if result < 0:
        return None
    return int(round(result))


def resolve_duration(value: DurationLike, default: int) -> int:
    """Parse a duration, falling back to default when it cannot be resolved."""
    resolved = parse_duration(value)
    if resolved is None:
        if value is not None:
            logger.warning(f"Unresolvable duration {value!r}, using default {default}ms")
        return default
    return resolved


def _plural(ms: float, ms_abs: float, n: float, name: str) -> str:
    is_plural = ms_abs >= n * 1.5
    return f"{round(ms / n)} {name}{'s' if is_plural else ''}"


def format_duration(ms: Union[int, float], long: bool = False) -> str:
    """
    Format milliseconds as a short ("1m") or long ("1 minute") string.

    Values are rounded to the largest whole unit, so the output is meant for
    display, not for round-tripping.
    """
    ms_abs = abs(ms)
    if long:
        for size, name in ((DAY, 'day'), (HOUR, 'hour'), (MINUTE, 'minute'), (SECOND, 'second')):
            if ms_abs >= size:
                return _plural(ms, ms_abs, size, name)
        return f"{int(ms)} ms"

    for size, suffix in ((DAY, 'd'), (HOUR, 'h'), (MINUTE, 'm'), (SECOND, 's')):
        if ms_abs >= size:
            return f"{round(ms / size)}{suffix}"
    return f"{int(ms)}ms"
