from scrobbler.events import AuthStatusChanged, EventBus, TrackCleared

from conftest import FakeService


def test_type_filter():
    bus = EventBus()
    auth, everything = [], []
    bus.subscribe(auth.append, AuthStatusChanged)
    bus.subscribe(everything.append)

    bus.publish(TrackCleared())
    bus.publish(AuthStatusChanged("lastfm", "authenticated"))

    assert auth == [AuthStatusChanged("lastfm", "authenticated")]
    assert len(everything) == 2


def test_failing_subscriber_does_not_stop_others():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.publish(TrackCleared())
    assert seen == [TrackCleared()]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    bus.publish(TrackCleared())
    assert seen == []


def test_service_publishes_only_real_changes(bus, recorded):
    service = FakeService("custom", bus=bus)
    service.sign_out()
    service.sign_out()
    assert recorded == [AuthStatusChanged("custom", "unauthenticated")]
