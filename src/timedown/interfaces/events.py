"""
Event names, payloads and the publish/subscribe emitter.

Countdowns and the registry both own an EventEmitter rather than being one,
so each exposes only the documented event names.

Payload contract:
    start/stop/tick/ending/reset  {'remaining_ms': int}
    end                           {'remaining_ms': 0}
    delete                        {}

The registry re-emits every countdown event with the countdown prepended:
handler(countdown, payload).
"""

import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)

START = 'start'
STOP = 'stop'
TICK = 'tick'
ENDING = 'ending'
END = 'end'
RESET = 'reset'
DELETE = 'delete'

COUNTDOWN_EVENTS: FrozenSet[str] = frozenset({START, STOP, TICK, ENDING, END, RESET, DELETE})

Handler = Callable[..., Any]


def payload(remaining_ms: Optional[int] = None) -> Dict[str, Any]:
    """Build an event payload."""
    if remaining_ms is None:
        return {}
    return {'remaining_ms': remaining_ms}


class _Listener:
    __slots__ = ('handler', 'once')

    def __init__(self, handler: Handler, once: bool):
        self.handler = handler
        self.once = once


class EventEmitter:
    """
    Synchronous in-process publish/subscribe.

    Handlers run in subscription order on the emitting thread. Emission
    works on a snapshot of the handler list, so handlers may subscribe or
    unsubscribe while an event is being delivered. A failing handler is
    logged and skipped; the remaining handlers still run.
    """

    def __init__(self, events: Optional[Iterable[str]] = None):
        """
        Args:
            events: Allowed event names (None allows any name)
        """
        self._events = frozenset(events) if events is not None else None
        self._listeners: Dict[str, List[_Listener]] = {}

    def _check(self, event: str) -> None:
        if self._events is not None and event not in self._events:
            raise ValueError(
                f"Unknown event {event!r}; expected one of {sorted(self._events)}"
            )

    def on(self, event: str, handler: Handler) -> 'EventEmitter':
        """Subscribe handler to every emission of event."""
        self._check(event)
        self._listeners.setdefault(event, []).append(_Listener(handler, once=False))
        return self

    def once(self, event: str, handler: Handler) -> 'EventEmitter':
        """Subscribe handler to the next emission of event only."""
        self._check(event)
        self._listeners.setdefault(event, []).append(_Listener(handler, once=True))
        return self

    def off(self, event: str, handler: Optional[Handler] = None) -> 'EventEmitter':
        """Unsubscribe handler from event, or every handler when handler is None."""
        if handler is None:
            self._listeners.pop(event, None)
            return self
        listeners = self._listeners.get(event)
        if not listeners:
            return self
        remaining = [l for l in listeners if l.handler != handler]
        if remaining:
            self._listeners[event] = remaining
        else:
            del self._listeners[event]
        return self

    def remove_all_listeners(self, event: Optional[str] = None) -> 'EventEmitter':
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def listeners(self, event: Optional[str] = None) -> List[Handler]:
        """Handlers subscribed to event, or to any event when event is None."""
        if event is None:
            return [l.handler for ls in self._listeners.values() for l in ls]
        return [l.handler for l in self._listeners.get(event, [])]

    def listener_count(self, event: Optional[str] = None) -> int:
        return len(self.listeners(event))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Deliver event to its handlers.

        Returns:
            True if at least one handler was subscribed
        """
        listeners = self._listeners.get(event)
        if not listeners:
            return False

        snapshot = list(listeners)
        if any(l.once for l in snapshot):
            kept = [l for l in listeners if not l.once]
            if kept:
                self._listeners[event] = kept
            else:
                del self._listeners[event]

        for listener in snapshot:
            try:
                listener.handler(*args)
            except Exception as e:
                logger.exception(f"Handler for {event!r} event failed: {e}")
        return True
