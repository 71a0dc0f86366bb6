from unittest.mock import Mock

import pytest
import requests

from scrobbler.events import AuthStatusChanged, EventBus, ScrobbleCompleted, TrackCleared
from scrobbler.models import Operation, ScrobbleOutcome
from scrobbler.notifier import GotifyNotifier, Notifier, WebhookNotifier

from conftest import snapshot

FAILED = ScrobbleOutcome(Operation.SCROBBLE, frozenset({"lastfm"}), frozenset({"custom"}),
                         {"custom": "not accepted"})


def test_webhook_gets_scrobble_failures(http):
    notifier = WebhookNotifier("https://hooks.example.com/x", session=http)
    bus = EventBus()
    notifier.attach(bus)

    bus.publish(ScrobbleCompleted(snapshot(), FAILED))
    bus.publish(ScrobbleCompleted(snapshot(), ScrobbleOutcome(Operation.SCROBBLE, frozenset({"lastfm"}))))
    bus.publish(TrackCleared())

    assert http.post.call_count == 1
    args, kwargs = http.post.call_args
    assert args[0] == "https://hooks.example.com/x"
    assert kwargs["json"]["level"] == "WARNING"
    assert kwargs["json"]["title"] == "Scrobbler: Scrobble failed"
    assert kwargs["json"]["message"] == "scrobble failed for: custom (not accepted)"
    assert kwargs["json"]["extra"]["failed"] == ["custom"]


def test_auth_failure_is_an_error(http):
    notifier = WebhookNotifier("https://hooks.example.com/x", min_level="ERROR", session=http)
    notifier.handle(ScrobbleCompleted(snapshot(), FAILED))
    http.post.assert_not_called()
    notifier.handle(AuthStatusChanged("lastfm", "failed", "timed out"))
    assert http.post.call_args[1]["json"]["message"] == "timed out"


def test_unconfigured_is_silent(http):
    WebhookNotifier(None, session=http).send("ERROR", "t", "m")
    GotifyNotifier("https://gotify.example.com", None, session=http).send("ERROR", "t", "m")
    http.post.assert_not_called()


def test_send_errors_are_swallowed(http):
    http.post.side_effect = requests.ConnectionError("down")
    WebhookNotifier("https://hooks.example.com/x", session=http).send("ERROR", "t", "m")


def test_gotify(http):
    notifier = GotifyNotifier("https://gotify.example.com/", " app-token ", default_priority=8, session=http)
    notifier.send("WARNING", "Scrobble failed", "custom", {"track": "T"})
    args, kwargs = http.post.call_args
    assert args[0] == "https://gotify.example.com/message"
    assert kwargs["headers"] == {"X-Gotify-Key": "app-token"}
    assert kwargs["json"]["priority"] == 8
    assert kwargs["json"]["title"] == "Scrobbler: Scrobble failed"


def test_from_env(monkeypatch):
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/x")
    monkeypatch.setenv("NOTIFY_MIN_LEVEL", "error")
    monkeypatch.setenv("APP_TAG", "Den")
    monkeypatch.setenv("GOTIFY_URL", "https://gotify.example.com")
    monkeypatch.setenv("GOTIFY_TOKEN", "tok")
    monkeypatch.setenv("GOTIFY_PRIORITY", "3")

    webhook = WebhookNotifier.from_env()
    assert webhook.configured
    assert webhook.min_level == 40
    assert webhook.app_tag == "Den"

    gotify = GotifyNotifier.from_env()
    assert gotify.configured
    assert gotify.default_priority == 3


def test_below_min_level_is_dropped():
    session = Mock()
    WebhookNotifier("https://hooks.example.com/x", session=session).send("INFO", "t", "m")
    session.post.assert_not_called()


def test_base_notifier_is_abstract():
    with pytest.raises(TypeError):
        Notifier()
