"""
Registry - countdowns multiplexed by key.

The registry is the sole owner of its countdowns: it creates or reuses them
by key, forwards control calls, and re-emits every countdown event as
(countdown, payload) so that one subscription observes all countdowns.

All countdowns share the registry's scheduler, so each key maps to exactly
one scheduler slot and all transitions are serialised on the scheduler lock.

Usage:
    registry = Registry()
    registry.on('end', lambda countdown, data: print(countdown.key, 'done'))
    registry.get('session-expiry', '15m', {'ending': '1m'}).start()
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..interfaces.events import COUNTDOWN_EVENTS, DELETE, EventEmitter, Handler
from ..timing.duration import DurationLike
from ..timing.scheduler import Scheduler, ThreadedScheduler
from .countdown import Countdown

logger = logging.getLogger(__name__)


class Registry:
    """Keyed collection of countdowns with event re-broadcast."""

    def __init__(self, scheduler: Optional[Scheduler] = None):
        """
        Initialize an empty registry.

        Args:
            scheduler: Scheduler shared by all countdowns (default: a
                ThreadedScheduler owned and shut down by this registry)
        """
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler if scheduler is not None else ThreadedScheduler()
        self._emitter = EventEmitter(COUNTDOWN_EVENTS)
        self._countdowns: Dict[str, Countdown] = {}
        self._destroyed = False

    # --- Lookup ---

    def get(
        self,
        key: str,
        duration: DurationLike = None,
        options: Optional[Dict[str, Any]] = None
    ) -> Countdown:
        """
        Get the countdown for key, creating it if absent.

        An existing countdown is silently reset when a duration or options
        are supplied; otherwise it is returned untouched.
        """
        if self._destroyed:
            raise RuntimeError("Registry has been destroyed")

        key = str(key)
        with self.scheduler.lock:
            countdown = self._countdowns.get(key)
            if countdown is None:
                countdown = Countdown(
                    key,
                    duration,
                    options,
                    scheduler=self.scheduler,
                    relay=self._relay
                )
                self._countdowns[key] = countdown
                logger.info(f"Countdown {key!r} created ({countdown.duration}ms)")
            elif duration is not None or options is not None:
                countdown.reset(duration, options, silent=True)
            return countdown

    def find(self, key: str) -> Optional[Countdown]:
        """Pure lookup, None when absent."""
        return self._countdowns.get(str(key))

    def keys(self) -> List[str]:
        return list(self._countdowns)

    def __contains__(self, key: object) -> bool:
        return str(key) in self._countdowns

    def __len__(self) -> int:
        return len(self._countdowns)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._countdowns))

    # --- Control (no-op for absent keys) ---

    def start(self, key: str, rate: DurationLike = None) -> 'Registry':
        """Start countdown key, optionally overriding its refresh interval."""
        countdown = self.find(key)
        if countdown is not None:
            if rate is not None:
                countdown.refresh = rate
            countdown.start()
        return self

    def stop(self, key: str) -> 'Registry':
        countdown = self.find(key)
        if countdown is not None:
            countdown.stop()
        return self

    def reset(
        self,
        key: str,
        duration: DurationLike = None,
        options: Optional[Dict[str, Any]] = None,
        silent: bool = False
    ) -> 'Registry':
        countdown = self.find(key)
        if countdown is not None:
            countdown.reset(duration, options, silent=silent)
        return self

    def restart(
        self,
        key: str,
        duration: DurationLike = None,
        options: Optional[Dict[str, Any]] = None
    ) -> 'Registry':
        countdown = self.find(key)
        if countdown is not None:
            countdown.restart(duration, options)
        return self

    def delete(self, key: str) -> 'Registry':
        """Remove and destroy countdown key."""
        with self.scheduler.lock:
            countdown = self._countdowns.pop(str(key), None)
            if countdown is not None:
                countdown.delete()
                logger.info(f"Countdown {countdown.key!r} deleted")
        return self

    def destroy(self):
        """
        Delete every countdown and detach all registry listeners.

        Terminal: the registry must not be used afterwards.
        """
        if self._destroyed:
            return

        with self.scheduler.lock:
            countdowns = list(self._countdowns.values())
            for countdown in countdowns:
                countdown.delete()
            self._countdowns.clear()
            self._emitter.remove_all_listeners()
            self._destroyed = True

        if self._owns_scheduler:
            self.scheduler.shutdown()
        logger.info(f"Registry destroyed ({len(countdowns)} countdowns deleted)")

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # --- Events ---

    def on(self, event: str, handler: Handler) -> 'Registry':
        """Subscribe to event from any countdown; handler(countdown, payload)."""
        self._emitter.on(event, handler)
        return self

    def once(self, event: str, handler: Handler) -> 'Registry':
        self._emitter.once(event, handler)
        return self

    def off(self, event: str, handler: Optional[Handler] = None) -> 'Registry':
        self._emitter.off(event, handler)
        return self

    def remove_all_listeners(self, event: Optional[str] = None) -> 'Registry':
        self._emitter.remove_all_listeners(event)
        return self

    def listeners(self, event: Optional[str] = None) -> List[Handler]:
        return self._emitter.listeners(event)

    def _relay(self, event: str, countdown: Countdown, data: Dict[str, Any]):
        if event == DELETE and self._countdowns.get(countdown.key) is countdown:
            # Deleted directly rather than through delete()
            del self._countdowns[countdown.key]
        self._emitter.emit(event, countdown, data)

    # --- Extension and introspection ---

    def use(self, fn: Callable[['Registry', Optional[Dict[str, Any]]], Any],
            options: Optional[Dict[str, Any]] = None) -> 'Registry':
        """Apply a plugin: fn(registry, options)."""
        fn(self, options)
        return self

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly view of every countdown."""
        with self.scheduler.lock:
            return {
                key: {
                    'state': countdown.state.value,
                    'remaining_ms': countdown.remaining_ms,
                    'duration_ms': countdown.duration,
                    'refresh_ms': countdown.refresh,
                    'ending_ms': countdown.ending,
                    **countdown.stats.to_dict(),
                }
                for key, countdown in self._countdowns.items()
            }
