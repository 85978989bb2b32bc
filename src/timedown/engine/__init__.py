"""Countdown engine - the per-countdown state machine and the keyed registry.

Contains:
- Countdown: drift-corrected countdown with pause/resume/reset/restart
- Registry: countdowns by key, with event re-broadcast
"""

from .countdown import Countdown, CountdownState
from .registry import Registry

__all__ = ['Countdown', 'CountdownState', 'Registry']
