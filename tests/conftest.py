"""Test configuration and fixtures"""

import json
import time
from concurrent.futures import Executor, Future
from unittest.mock import Mock

import pytest

from scrobbler.events import EventBus
from scrobbler.models import PlaybackSnapshot
from scrobbler.services import ScrobbleService, ServiceCredential
from scrobbler.store import MemoryStore


class FakeTimer:
    """Stands in for threading.Timer; tests fire it by hand."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = tuple(args or ())
        self.kwargs = dict(kwargs or {})
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self, force=False):
        # force=True simulates a timer that was already running when cancel() came in
        if self.cancelled and not force:
            return
        self.function(*self.args, **self.kwargs)


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    def scrobble_timers(self):
        return [t for t in self.timers if t.args]


class SyncExecutor(Executor):
    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Queues work until run_all(); lets tests reorder completions."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)


class FakeSource:
    def __init__(self, name="Fake Player", snapshot=None):
        self.name = name
        self.snapshot = snapshot
        self.error = None
        self.calls = 0

    def fetch_current_track_info(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.snapshot


class FakeService(ScrobbleService):
    def __init__(self, service_id, result=True, error=None, delay=0.0, bus=None):
        super().__init__(bus)
        self.service_id = service_id
        self.service_name = service_id.title()
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []
        self._credential = ServiceCredential.authenticated("token")

    def _respond(self, name, *args):
        self.calls.append((name, args))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result

    def restore(self):
        return True

    def authenticate(self, timeout=None):
        return True

    def scrobble(self, artist, track, album):
        return self._respond("scrobble", artist, track, album)

    def update_now_playing(self, artist, track, album):
        return self._respond("update_now_playing", artist, track, album)

    def sign_out(self):
        self._set_credential(ServiceCredential.unauthenticated())


class FakeLastFMClient:
    """Records send() calls; answers from a method -> response table."""

    api_key = "key"

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def send(self, method, params=None, *, allow_empty=False):
        self.calls.append((method, dict(params or {}), allow_empty))
        response = self.responses.get(method, {})
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params or {})
        return response

    def authorization_url(self, token):
        return f"https://www.last.fm/api/auth/?api_key=key&token={token}"

    def methods(self):
        return [c[0] for c in self.calls]


def make_response(status=200, json_data=None, text=None):
    resp = Mock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    if json_data is not None:
        resp.json.return_value = json_data
        resp.text = json.dumps(json_data)
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
        resp.text = text or ""
    return resp


def snapshot(artist="A", title="T", album="Album", duration=200.0, playing=True):
    return PlaybackSnapshot(is_playing=playing, title=title, artist=artist, album=album,
                            duration=duration, source_application="Fake Player")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorded(bus):
    """Every event published on the bus, in order."""
    events = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def http():
    session = Mock()
    session.headers = {}
    return session
