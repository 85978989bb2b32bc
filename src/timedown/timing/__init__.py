"""Timing primitives - duration parsing, keyed scheduling, tick statistics."""

from .duration import (
    parse_duration,
    resolve_duration,
    format_duration,
    DEFAULT_DURATION_MS,
    DEFAULT_ENDING_MS,
    DEFAULT_REFRESH_MS,
)
from .scheduler import Scheduler, ThreadedScheduler, ManualScheduler
from .tick_stats import TickStats

__all__ = [
    'parse_duration', 'resolve_duration', 'format_duration',
    'DEFAULT_DURATION_MS', 'DEFAULT_ENDING_MS', 'DEFAULT_REFRESH_MS',
    'Scheduler', 'ThreadedScheduler', 'ManualScheduler', 'TickStats',
]
