"""
Alert sinks: generic webhook and Gotify.

- Webhook: POST with a JSON body to NOTIFY_WEBHOOK_URL (Slack/Discord-compatible hooks work too).
- Gotify: POST /message with an app token (GOTIFY_URL, GOTIFY_TOKEN, GOTIFY_PRIORITY).
- Each respects its own minimum level (NOTIFY_MIN_LEVEL / GOTIFY_MIN_LEVEL, default WARNING).
- Best-effort: failures are logged at DEBUG and never raised.

attach() subscribes a notifier to the event bus so scrobble failures and
authentication failures reach the user even without a UI.
"""

from __future__ import annotations

import abc
import logging
import os

import requests

from .events import AuthStatusChanged, Event, EventBus, ScrobbleCompleted

log = logging.getLogger("scrobbler.notifier")

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}
DEFAULT_TAG = "Scrobbler"


class Notifier(abc.ABC):
    def __init__(self, min_level: str = "WARNING", app_tag: str = DEFAULT_TAG, timeout: float = 5,
                 session: requests.Session | None = None):
        self.min_level = _LEVELS.get(min_level.upper(), 30)
        self.app_tag = app_tag
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return False

    def send(self, level: str, title: str, message: str, extra: dict | None = None) -> None:
        if not self.configured:
            return
        if _LEVELS.get(level.upper(), 30) < self.min_level:
            return
        try:
            self._post(level.upper(), f"{self.app_tag}: {title}", message, extra or {})
        except requests.RequestException as e:
            log.debug("%s send failed: %s", type(self).__name__, e)

    @abc.abstractmethod
    def _post(self, level: str, title: str, message: str, extra: dict) -> None: ...

    # -------- event bus --------
    def handle(self, event: Event) -> None:
        if isinstance(event, ScrobbleCompleted) and event.outcome.failed:
            self.send("WARNING", "Scrobble failed", event.outcome.summary() or "",
                      {"artist": event.track.artist, "track": event.track.title,
                       "failed": sorted(event.outcome.failed)})
        elif isinstance(event, AuthStatusChanged) and event.state == "failed":
            self.send("ERROR", f"{event.service_id} authentication failed", event.reason or "")

    def attach(self, bus: EventBus):
        return bus.subscribe(self.handle)


class WebhookNotifier(Notifier):
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = DEFAULT_TAG, **kwargs):
        super().__init__(min_level, app_tag, **kwargs)
        self.webhook_url = webhook_url.strip() if webhook_url else None

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def _post(self, level: str, title: str, message: str, extra: dict) -> None:
        payload = {"level": level, "title": title, "message": message, "extra": extra}
        self.session.post(self.webhook_url, json=payload, timeout=self.timeout)

    @classmethod
    def from_env(cls) -> WebhookNotifier:
        return cls(
            webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
            min_level=os.getenv("NOTIFY_MIN_LEVEL", "WARNING"),
            app_tag=os.getenv("APP_TAG", DEFAULT_TAG),
        )


class GotifyNotifier(Notifier):
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 default_priority: int = 5, app_tag: str = DEFAULT_TAG, **kwargs):
        super().__init__(min_level, app_tag, **kwargs)
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.default_priority = default_priority

    @property
    def configured(self) -> bool:
        return bool(self.url and self.token)

    def _post(self, level: str, title: str, message: str, extra: dict) -> None:
        body = {
            "title": title,
            "message": message if not extra else f"{message}\n\n{extra}",
            "priority": self.default_priority,
        }
        self.session.post(f"{self.url}/message", json=body,
                          headers={"X-Gotify-Key": self.token}, timeout=self.timeout)

    @classmethod
    def from_env(cls) -> GotifyNotifier:
        return cls(
            url=os.getenv("GOTIFY_URL"),
            token=os.getenv("GOTIFY_TOKEN"),
            min_level=os.getenv("GOTIFY_MIN_LEVEL", "WARNING"),
            default_priority=int(os.getenv("GOTIFY_PRIORITY", "5")),
            app_tag=os.getenv("APP_TAG", DEFAULT_TAG),
        )
