"""
Tick timing statistics.

The tick loop never trusts the scheduler to fire on time; remaining time is
always recomputed from the loop anchor. What the scheduler does get wrong is
still worth watching: each tick records its lateness (actual fire time minus
intended fire time) so that jitter shows up in the status and metrics
output.
"""

from collections import deque
from typing import Any, Dict

import numpy as np


class TickStats:
    """
    Rolling lateness statistics for one countdown.

    Only the most recent `history` samples feed mean/std/max; `count`
    covers every tick since the last reset.
    """

    def __init__(self, history: int = 256):
        self.history = history
        self._lateness: deque = deque(maxlen=history)
        self.count = 0

    def record(self, lateness_ms: float) -> None:
        self._lateness.append(max(0.0, float(lateness_ms)))
        self.count += 1

    def reset(self) -> None:
        self._lateness.clear()
        self.count = 0

    @property
    def mean_ms(self) -> float:
        """Mean lateness over the rolling window."""
        if not self._lateness:
            return 0.0
        return float(np.mean(self._lateness))

    @property
    def std_ms(self) -> float:
        """Lateness standard deviation (scheduler jitter)."""
        if len(self._lateness) < 2:
            return 0.0
        return float(np.std(self._lateness))

    @property
    def max_ms(self) -> float:
        if not self._lateness:
            return 0.0
        return float(np.max(self._lateness))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticks': self.count,
            'lateness_mean_ms': round(self.mean_ms, 3),
            'lateness_std_ms': round(self.std_ms, 3),
            'lateness_max_ms': round(self.max_ms, 3),
        }
