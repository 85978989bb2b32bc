"""
timedown: Drift-Corrected Countdown Timers

An embeddable countdown engine. Each countdown counts a duration down to
zero in real time, emitting tick, ending and end notifications, and can be
paused, resumed, reset and restarted at any point, including from inside
its own event handlers. A registry tracks many countdowns under string keys
("session-expiry", "auction-close") and re-broadcasts all of their events.

Architecture:
    Registry ──owns──▶ Countdown ──schedules──▶ Scheduler (one slot per key)
       ▲                   │
       └──── (countdown, payload) re-emit ◀── start/stop/tick/ending/end/reset/delete

Version: 1.0.0
"""

__version__ = "1.0.0"

from .engine.countdown import Countdown, CountdownState
from .engine.registry import Registry
from .timing.duration import parse_duration, format_duration
from .timing.scheduler import ThreadedScheduler, ManualScheduler

__all__ = [
    "Registry",
    "Countdown",
    "CountdownState",
    "ThreadedScheduler",
    "ManualScheduler",
    "parse_duration",
    "format_duration",
    "__version__",
]
