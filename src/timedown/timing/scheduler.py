"""
Keyed One-Shot Scheduler

Countdowns never sleep or spin: every timing effect is a deferred callback
registered under the countdown's key. A key owns exactly one slot, so
scheduling under a key replaces whatever was pending there, and cancelling a
key guarantees its callback will not run once cancel() has returned.

All callbacks execute while holding the scheduler's re-entrant lock, and
countdown transitions take the same lock. Together they behave as one
logical thread even when control calls arrive from other threads.

Implementations:
    ThreadedScheduler - real time, one daemon dispatcher thread
    ManualScheduler   - virtual clock advanced explicitly (tests, simulation)
"""

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


@dataclass
class ScheduledCallback:
    """A pending callback occupying a key's slot."""
    due_ms: float       # Scheduler time the callback is intended to run at
    seq: int            # Monotonic sequence, breaks ties and detects replaced slots
    callback: Callback


class Scheduler:
    """
    Base class for keyed, cancellable, one-shot delayed callbacks.

    Subclasses provide the clock and the dispatch mechanism.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._slots: Dict[str, ScheduledCallback] = {}
        self._seq = itertools.count()

    def now(self) -> float:
        """Current scheduler time in milliseconds (monotonic)."""
        raise NotImplementedError

    def schedule_once(self, key: str, callback: Callback, delay_ms: float) -> None:
        """Run callback once after delay_ms, replacing any callback pending under key."""
        delay_ms = max(0.0, float(delay_ms))
        with self.lock:
            slot = ScheduledCallback(
                due_ms=self.now() + delay_ms,
                seq=next(self._seq),
                callback=callback
            )
            self._slots[key] = slot
            self._on_scheduled(key, slot)

    def cancel(self, key: str) -> bool:
        """
        Cancel the callback pending under key.

        Returns:
            True if a callback was pending
        """
        with self.lock:
            return self._slots.pop(key, None) is not None

    def pending(self, key: str) -> bool:
        """Check whether a callback is pending under key."""
        with self.lock:
            return key in self._slots

    def pending_count(self) -> int:
        with self.lock:
            return len(self._slots)

    def _on_scheduled(self, key: str, slot: ScheduledCallback) -> None:
        """Hook for subclasses to wake their dispatcher."""


class ThreadedScheduler(Scheduler):
    """
    Real-time scheduler backed by a single dispatcher thread.

    The thread starts lazily on the first schedule_once() and runs until
    shutdown(). Deadlines are kept in a heap; entries whose slot has been
    cancelled or replaced are discarded when they reach the top.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, name: str = "timedown-scheduler"):
        """
        Initialize the scheduler.

        Args:
            clock: Seconds-returning monotonic clock (default: time.monotonic)
            name: Dispatcher thread name
        """
        super().__init__()
        self._clock = clock or time.monotonic
        self._cond = threading.Condition(self.lock)
        self._heap: List[Tuple[float, int, str]] = []
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._closed = False
        self.name = name

        self.stats = {
            'callbacks_run': 0,
            'callback_errors': 0,
        }

    def now(self) -> float:
        return self._clock() * 1000.0

    def _on_scheduled(self, key: str, slot: ScheduledCallback) -> None:
        if self._closed:
            self._slots.pop(key, None)
            logger.warning(f"Scheduler closed, dropping callback for {key!r}")
            return
        heapq.heappush(self._heap, (slot.due_ms, slot.seq, key))
        if not self._running:
            self._running = True
            self._thread = threading.Thread(
                target=self._dispatch,
                name=self.name,
                daemon=True
            )
            self._thread.start()
            logger.debug(f"Scheduler thread {self.name} started")
        self._cond.notify()

    def _dispatch(self):
        """Dispatcher loop (runs in background thread)."""
        with self._cond:
            while self._running:
                if not self._heap:
                    self._cond.wait()
                    continue

                due_ms, seq, key = self._heap[0]
                slot = self._slots.get(key)
                if slot is None or slot.seq != seq:
                    heapq.heappop(self._heap)
                    continue

                wait_ms = due_ms - self.now()
                if wait_ms > 0:
                    self._cond.wait(wait_ms / 1000.0)
                    continue

                heapq.heappop(self._heap)
                del self._slots[key]
                self.stats['callbacks_run'] += 1
                try:
                    slot.callback()
                except Exception as e:
                    self.stats['callback_errors'] += 1
                    logger.exception(f"Scheduled callback for {key!r} failed: {e}")

        logger.debug(f"Scheduler thread {self.name} stopped")

    def shutdown(self, timeout: float = 2.0):
        """Drop every pending callback and stop the dispatcher thread."""
        with self._cond:
            self._closed = True
            self._running = False
            self._slots.clear()
            self._heap.clear()
            self._cond.notify_all()
            thread = self._thread
            self._thread = None

        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    @property
    def closed(self) -> bool:
        return self._closed


class ManualScheduler(Scheduler):
    """
    Deterministic scheduler driven by an explicit virtual clock.

    Nothing runs until advance() is called. A constant lag_ms delays every
    callback past its deadline, emulating a scheduler that wakes up late.
    Callback exceptions propagate to the caller of advance().
    """

    def __init__(self, start_ms: float = 0.0, lag_ms: float = 0.0):
        super().__init__()
        if lag_ms < 0:
            raise ValueError("lag_ms must be non-negative")
        self._now = float(start_ms)
        self.lag_ms = float(lag_ms)

    def now(self) -> float:
        return self._now

    def _next_slot(self) -> Optional[Tuple[str, ScheduledCallback]]:
        if not self._slots:
            return None
        return min(self._slots.items(), key=lambda item: (item[1].due_ms, item[1].seq))

    def advance(self, ms: float) -> int:
        """
        Move the clock forward, running every callback that falls due.

        Callbacks scheduled by callbacks run too if they fall inside the
        window.

        Returns:
            Number of callbacks run
        """
        if ms < 0:
            raise ValueError("cannot advance the clock backwards")

        fired = 0
        with self.lock:
            target = self._now + ms
            while True:
                entry = self._next_slot()
                if entry is None:
                    break
                key, slot = entry
                fire_at = max(slot.due_ms + self.lag_ms, self._now)
                if fire_at > target:
                    break
                self._now = fire_at
                del self._slots[key]
                slot.callback()
                fired += 1
            self._now = target
        return fired

    def run_until_idle(self, max_ms: float = 3_600_000.0) -> float:
        """
        Advance until no callback is pending or max_ms has elapsed.

        Returns:
            Virtual milliseconds that elapsed
        """
        with self.lock:
            start = self._now
            limit = start + max_ms
            while self._slots:
                _, slot = self._next_slot()
                fire_at = max(slot.due_ms + self.lag_ms, self._now)
                if fire_at > limit:
                    self.advance(limit - self._now)
                    break
                self.advance(fire_at - self._now)
            return self._now - start
