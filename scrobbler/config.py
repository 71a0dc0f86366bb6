"""
Configuration via environment variables.

Notifier settings (NOTIFY_*, GOTIFY_*, APP_TAG) are read by the notifiers'
own from_env().
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .lastfm_service import DEFAULT_SETTLE_DELAY

DEFAULT_CUSTOM_URL = "https://clientserver-production-be44.up.railway.app"
DEFAULT_STORE_PATH = os.path.join(os.path.expanduser("~"), ".config", "scrobbler", "store.json")

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"

    now_playing_source: str = "music"  # music | spotify | bluos
    bluos_host: str = "127.0.0.1"
    bluos_port: int = 11000

    lastfm_enabled: bool = True
    lastfm_api_key: str | None = None
    lastfm_api_secret: str | None = None
    lastfm_username: str | None = None
    lastfm_password: str | None = None
    auth_settle_delay: float = DEFAULT_SETTLE_DELAY

    custom_enabled: bool = False
    custom_url: str = DEFAULT_CUSTOM_URL
    bluesky_handle: str | None = None
    session_check_interval: float = 300.0

    store_path: str = DEFAULT_STORE_PATH
    http_timeout: float = 10.0

    friends_limit: int = 10
    friend_tracks_limit: int = 5

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            now_playing_source=os.getenv("NOW_PLAYING_SOURCE", "music").strip().lower(),
            bluos_host=os.getenv("BLUOS_HOST", "127.0.0.1"),
            bluos_port=_env_int("BLUOS_PORT", 11000),
            lastfm_enabled=_env_bool("LASTFM_ENABLED", True),
            lastfm_api_key=os.getenv("LASTFM_API_KEY") or None,
            lastfm_api_secret=os.getenv("LASTFM_API_SECRET") or None,
            lastfm_username=os.getenv("LASTFM_USERNAME") or None,
            lastfm_password=os.getenv("LASTFM_PASSWORD") or None,
            auth_settle_delay=_env_float("AUTH_SETTLE_DELAY", DEFAULT_SETTLE_DELAY),
            custom_enabled=_env_bool("CUSTOM_SCROBBLER_ENABLED", False),
            custom_url=os.getenv("CUSTOM_SCROBBLER_URL", DEFAULT_CUSTOM_URL),
            bluesky_handle=os.getenv("BLUESKY_HANDLE") or None,
            session_check_interval=_env_float("SESSION_CHECK_INTERVAL", 300.0),
            store_path=os.getenv("STORE_PATH", DEFAULT_STORE_PATH),
            http_timeout=_env_float("HTTP_TIMEOUT", 10.0),
            friends_limit=_env_int("FRIENDS_LIMIT", 10),
            friend_tracks_limit=_env_int("FRIEND_TRACKS_LIMIT", 5),
        )

    def validate(self) -> None:
        """Fail up-front with a clear message instead of half-starting."""
        if self.lastfm_enabled and not (self.lastfm_api_key and self.lastfm_api_secret):
            raise SystemExit("LASTFM_API_KEY and LASTFM_API_SECRET are required when Last.fm is enabled")
        if self.custom_enabled and not self.bluesky_handle:
            raise SystemExit("BLUESKY_HANDLE is required when the custom scrobbler is enabled")
        if not (self.lastfm_enabled or self.custom_enabled):
            raise SystemExit("Enable at least one scrobbling service")
        if self.now_playing_source not in ("music", "spotify", "bluos"):
            raise SystemExit(f"Unknown NOW_PLAYING_SOURCE: {self.now_playing_source}")
