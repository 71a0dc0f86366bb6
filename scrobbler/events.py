"""
State-change notifications for whoever renders or reacts to the engine.

The tracker and the services publish small frozen events; consumers
(a UI, the notifiers, tests) subscribe callables. Delivery is synchronous on
the publishing thread, so subscribers must be quick and must not call back
into the publisher while holding their own locks.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from .models import PlaybackSnapshot, ScrobbleOutcome

log = logging.getLogger("scrobbler.events")


@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class TrackChanged(Event):
    track: PlaybackSnapshot
    session_id: int
    scrobble_delay: float | None


@dataclass(frozen=True)
class TrackCleared(Event):
    pass


@dataclass(frozen=True)
class NowPlayingDispatched(Event):
    track: PlaybackSnapshot
    outcome: ScrobbleOutcome


@dataclass(frozen=True)
class ScrobbleCompleted(Event):
    track: PlaybackSnapshot
    outcome: ScrobbleOutcome


@dataclass(frozen=True)
class AuthStatusChanged(Event):
    service_id: str
    state: str
    reason: str | None = None


@dataclass(frozen=True)
class AuthorizationUrlReady(Event):
    service_id: str
    url: str


Subscriber = Callable[[Event], None]


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[tuple[type[Event], Subscriber]] = []

    def subscribe(self, callback: Subscriber, event_type: type[Event] = Event) -> Callable[[], None]:
        """Register callback for event_type (and subclasses). Returns an unsubscribe function."""
        entry = (event_type, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            targets = [cb for etype, cb in self._subscribers if isinstance(event, etype)]
        for callback in targets:
            # One broken consumer must not stop the others or the publisher
            try:
                callback(event)
            except Exception:
                log.exception("Event subscriber failed for %s", type(event).__name__)
