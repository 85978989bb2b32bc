"""
Pytest configuration and fixtures for timedown tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


@pytest.fixture
def manual_scheduler():
    """Virtual-clock scheduler; nothing runs until advance()."""
    from timedown.timing.scheduler import ManualScheduler
    return ManualScheduler()


@pytest.fixture
def threaded_scheduler():
    """Real-time scheduler, shut down after the test."""
    from timedown.timing.scheduler import ThreadedScheduler
    scheduler = ThreadedScheduler(name="test-scheduler")
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def registry(manual_scheduler):
    """Registry on a manual scheduler."""
    from timedown.engine.registry import Registry
    reg = Registry(scheduler=manual_scheduler)
    yield reg
    reg.destroy()


@pytest.fixture
def live_registry():
    """Registry with its own threaded scheduler."""
    from timedown.engine.registry import Registry
    reg = Registry()
    yield reg
    reg.destroy()


class EventLog:
    """Records (event, payload) pairs from a countdown or registry."""

    EVENTS = ('start', 'stop', 'tick', 'ending', 'end', 'reset', 'delete')

    def __init__(self, source, with_origin: bool = False):
        self.events = []
        for name in self.EVENTS:
            if with_origin:
                source.on(name, self._origin_recorder(name))
            else:
                source.on(name, self._recorder(name))

    def _recorder(self, name):
        def record(data):
            self.events.append((name, data))
        return record

    def _origin_recorder(self, name):
        def record(countdown, data):
            self.events.append((name, countdown.key, data))
        return record

    def names(self):
        return [e[0] for e in self.events]

    def of(self, name):
        return [e[-1] for e in self.events if e[0] == name]


@pytest.fixture
def event_log():
    """Factory: event_log(source, with_origin=False) -> EventLog."""
    return EventLog
