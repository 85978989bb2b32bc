"""
Countdown - one drift-corrected countdown and its state machine.

States:
    CREATED ──start()──▶ STARTED ──stop()──▶ STOPPED ──start()──▶ STARTED
                            │
                            └── remaining reaches 0 ──▶ ENDED ──(silent re-init)──▶ CREATED

    reset()   from any live state  ──▶ CREATED
    restart() from any live state  ──▶ STARTED (silent reset, then start)
    delete()  from any state       ──▶ DESTROYED (terminal)

Tick loop:
    Each start() anchors the loop: anchor_ms = now(), anchor_remaining =
    remaining_ms. Every tick recomputes

        remaining_ms = anchor_remaining - (now() - anchor_ms)

    instead of subtracting a fixed step, so late or coalesced scheduler
    wake-ups never accumulate into drift. The anchor holds for the whole
    Started-cycle and is only re-taken by the next start(), which is also
    what makes stop()/start() resume from the paused remaining time.

Every public transition is idempotent against the states it cannot leave,
and each transition bumps a cycle token. Work that would follow an event
emission (scheduling the next tick, re-initialising after end) is skipped
when a handler has moved the countdown on in the meantime, so re-entrant
calls can never leave two loops running.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..interfaces.events import (
    COUNTDOWN_EVENTS,
    DELETE,
    END,
    ENDING,
    RESET,
    START,
    STOP,
    TICK,
    EventEmitter,
    Handler,
    payload,
)
from ..timing.duration import (
    DEFAULT_DURATION_MS,
    DEFAULT_ENDING_MS,
    DEFAULT_REFRESH_MS,
    DurationLike,
    resolve_duration,
)
from ..timing.scheduler import Scheduler, ThreadedScheduler
from ..timing.tick_stats import TickStats

logger = logging.getLogger(__name__)

Relay = Callable[[str, 'Countdown', Dict[str, Any]], None]


class CountdownState(str, Enum):
    """Countdown lifecycle state."""
    CREATED = "CREATED"        # Initialised, not running
    STARTED = "STARTED"        # Tick loop active
    STOPPED = "STOPPED"        # Paused, remaining time preserved
    ENDED = "ENDED"            # Reached zero (visible to 'end' handlers only)
    DESTROYED = "DESTROYED"    # Deleted, terminal


def _resolve_refresh(value: DurationLike) -> int:
    refresh = resolve_duration(value, DEFAULT_REFRESH_MS)
    if refresh < 1:
        logger.warning(f"Refresh interval {value!r} below 1ms, using default {DEFAULT_REFRESH_MS}ms")
        refresh = DEFAULT_REFRESH_MS
    return refresh


class Countdown:
    """
    A single countdown addressed by key.

    Usually obtained from Registry.get(); a standalone countdown creates
    and owns a ThreadedScheduler of its own.
    """

    def __init__(
        self,
        key: str,
        duration: DurationLike = None,
        options: Optional[Dict[str, Any]] = None,
        scheduler: Optional[Scheduler] = None,
        relay: Optional[Relay] = None
    ):
        """
        Initialize a countdown in the CREATED state.

        Args:
            key: Identifier, also the scheduler slot the tick loop uses
            duration: Milliseconds or human-readable string (unresolvable -> 0)
            options: 'refresh' (default 10ms) and 'ending' (default 5000ms)
            scheduler: Shared scheduler (default: a private ThreadedScheduler)
            relay: Called as relay(event, countdown, payload) after each emission
        """
        self._key = str(key)
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler if scheduler is not None else ThreadedScheduler(
            name=f"countdown-{self._key}"
        )
        self._relay = relay
        self._emitter = EventEmitter(COUNTDOWN_EVENTS)
        self.stats = TickStats()

        # Loop anchor and re-entrancy token
        self._cycle = 0
        self._anchor_ms = 0.0
        self._anchor_remaining = 0
        self._next_due_ms = 0.0
        self._ending_fired = False

        self._init(duration, options or {})

    def _init(self, duration: DurationLike, options: Dict[str, Any]):
        self._options = dict(options)
        self._duration = resolve_duration(duration, DEFAULT_DURATION_MS)
        self._pending_duration = None
        self._ending = resolve_duration(
            self._options.get('ending', DEFAULT_ENDING_MS), DEFAULT_ENDING_MS
        )
        self._refresh = _resolve_refresh(self._options.get('refresh', DEFAULT_REFRESH_MS))
        self._remaining = self._duration
        self._state = CountdownState.CREATED

    # --- Fields ---

    @property
    def key(self) -> str:
        return self._key

    @property
    def state(self) -> CountdownState:
        return self._state

    @property
    def remaining_ms(self) -> Optional[int]:
        return self._remaining

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def options(self) -> Optional[Dict[str, Any]]:
        return dict(self._options) if self._options is not None else None

    @property
    def duration(self) -> Optional[int]:
        """
        Total duration in ms (None once destroyed).

        Fixed for the whole run: set outside CREATED, the new total is held
        back until the next reset or end.
        """
        return self._duration

    @duration.setter
    def duration(self, value: DurationLike):
        with self._scheduler.lock:
            if self._state is CountdownState.DESTROYED:
                return
            duration = resolve_duration(value, DEFAULT_DURATION_MS)
            if self._state is CountdownState.CREATED:
                self._duration = duration
                self._remaining = duration
            else:
                self._pending_duration = duration

    @property
    def ending(self) -> Optional[int]:
        """Threshold in ms below which the one-shot 'ending' event fires."""
        return self._ending

    @ending.setter
    def ending(self, value: DurationLike):
        with self._scheduler.lock:
            if self._state is CountdownState.DESTROYED:
                return
            self._ending = resolve_duration(value, DEFAULT_ENDING_MS)
            self._options['ending'] = self._ending

    @property
    def refresh(self) -> Optional[int]:
        """Tick interval in ms; a change applies from the next scheduled tick."""
        return self._refresh

    @refresh.setter
    def refresh(self, value: DurationLike):
        with self._scheduler.lock:
            if self._state is CountdownState.DESTROYED:
                return
            self._refresh = _resolve_refresh(value)
            self._options['refresh'] = self._refresh

    # --- Events ---

    def on(self, event: str, handler: Handler) -> 'Countdown':
        self._emitter.on(event, handler)
        return self

    def once(self, event: str, handler: Handler) -> 'Countdown':
        self._emitter.once(event, handler)
        return self

    def off(self, event: str, handler: Optional[Handler] = None) -> 'Countdown':
        self._emitter.off(event, handler)
        return self

    def remove_all_listeners(self, event: Optional[str] = None) -> 'Countdown':
        self._emitter.remove_all_listeners(event)
        return self

    def listeners(self, event: Optional[str] = None) -> List[Handler]:
        return self._emitter.listeners(event)

    def _emit(self, event: str, data: Dict[str, Any]):
        relay = self._relay
        self._emitter.emit(event, data)
        if relay is not None:
            relay(event, self, data)

    # --- Transitions ---

    def start(self) -> 'Countdown':
        """Start, or resume from the paused remaining time."""
        with self._scheduler.lock:
            if self._state not in (CountdownState.CREATED, CountdownState.STOPPED):
                return self
            if not self._duration:
                logger.debug(f"Countdown {self._key!r} has no duration, not starting")
                return self

            if self._state is CountdownState.CREATED:
                self.stats.reset()

            self._state = CountdownState.STARTED
            self._cycle += 1
            cycle = self._cycle
            self._anchor_ms = self._scheduler.now()
            self._anchor_remaining = self._remaining
            self._ending_fired = False

            logger.debug(f"Countdown {self._key!r} started with {self._remaining}ms remaining")
            self._emit(START, payload(self._remaining))

            if cycle == self._cycle:
                self._schedule_tick(cycle)
        return self

    def stop(self) -> 'Countdown':
        """Pause, capturing the remaining time as of now."""
        with self._scheduler.lock:
            if self._state is not CountdownState.STARTED:
                return self

            elapsed = int(self._scheduler.now() - self._anchor_ms)
            self._remaining = max(0, self._anchor_remaining - elapsed)
            self._state = CountdownState.STOPPED
            self._cycle += 1
            self._scheduler.cancel(self._key)

            logger.debug(f"Countdown {self._key!r} stopped with {self._remaining}ms remaining")
            self._emit(STOP, payload(self._remaining))
        return self

    def reset(
        self,
        duration: DurationLike = None,
        options: Optional[Dict[str, Any]] = None,
        silent: bool = False
    ) -> 'Countdown':
        """
        Return to CREATED, cancelling any pending tick.

        Args:
            duration: New duration (None keeps the current one)
            options: Options merged over the current ones
            silent: Suppress the 'reset' event
        """
        with self._scheduler.lock:
            if self._state is CountdownState.DESTROYED:
                return self

            self._cycle += 1
            self._scheduler.cancel(self._key)

            if duration is None:
                duration = self._next_duration()
            merged = dict(self._options)
            if options:
                merged.update(options)
            self._init(duration, merged)
            self.stats.reset()

            logger.debug(f"Countdown {self._key!r} reset to {self._duration}ms")
            if not silent:
                self._emit(RESET, payload(self._remaining))
        return self

    def restart(
        self,
        duration: DurationLike = None,
        options: Optional[Dict[str, Any]] = None
    ) -> 'Countdown':
        """Silently reset, then start."""
        with self._scheduler.lock:
            if self._state is CountdownState.DESTROYED:
                return self
            self.reset(duration, options, silent=True)
            return self.start()

    def delete(self) -> 'Countdown':
        """
        Destroy the countdown.

        Emits exactly one 'delete' event, then drops every listener. The
        countdown must not be used afterwards except to read its state.
        """
        with self._scheduler.lock:
            if self._state is CountdownState.DESTROYED:
                return self

            self._cycle += 1
            self._scheduler.cancel(self._key)
            self._duration = None
            self._pending_duration = None
            self._ending = None
            self._refresh = None
            self._remaining = None
            self._options = None
            self._state = CountdownState.DESTROYED

            logger.debug(f"Countdown {self._key!r} deleted")
            self._emit(DELETE, payload())
            self._emitter.remove_all_listeners()
            self._relay = None

        if self._owns_scheduler:
            self._scheduler.shutdown()
        return self

    def _next_duration(self) -> int:
        if self._pending_duration is not None:
            return self._pending_duration
        return self._duration

    # --- Tick loop ---

    def _schedule_tick(self, cycle: int):
        # Never sleep past the deadline, so the final tick lands on zero
        delay = min(self._refresh, max(self._remaining, 0))
        self._next_due_ms = self._scheduler.now() + delay
        self._scheduler.schedule_once(self._key, lambda: self._tick(cycle), delay)

    def _tick(self, cycle: int):
        with self._scheduler.lock:
            if cycle != self._cycle or self._state is not CountdownState.STARTED:
                return

            now = self._scheduler.now()
            self.stats.record(now - self._next_due_ms)
            self._remaining = self._anchor_remaining - int(now - self._anchor_ms)

            if self._remaining <= 0:
                self._end()
                return

            if not self._ending_fired and self._remaining < self._ending:
                self._ending_fired = True
                self._emit(ENDING, payload(self._remaining))
                if cycle != self._cycle:
                    return

            self._emit(TICK, payload(self._remaining))
            if cycle == self._cycle:
                self._schedule_tick(cycle)

    def _end(self):
        self._remaining = 0
        self._state = CountdownState.ENDED
        self._cycle += 1
        cycle = self._cycle
        self._scheduler.cancel(self._key)

        logger.debug(f"Countdown {self._key!r} ended")
        self._emit(END, payload(0))

        # Handlers may have restarted, reset or deleted us
        if cycle == self._cycle and self._state is CountdownState.ENDED:
            self._init(self._next_duration(), self._options)

    def __repr__(self) -> str:
        return f"<Countdown {self._key!r} {self._state.value} remaining={self._remaining}ms>"
