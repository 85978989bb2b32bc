"""Event contract shared by countdowns and the registry."""

from .events import EventEmitter, COUNTDOWN_EVENTS

__all__ = ['EventEmitter', 'COUNTDOWN_EVENTS']
