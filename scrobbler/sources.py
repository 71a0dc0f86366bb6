"""
Now-playing sources.

A source answers one question: what is playing right now? Anything with a
``name`` and ``fetch_current_track_info()`` returning a PlaybackSnapshot (or
None when it cannot tell) will do.
"""

from __future__ import annotations

import logging
import subprocess
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Protocol

import requests

from .models import PlaybackSnapshot

log = logging.getLogger("scrobbler.sources")


class NowPlayingSource(Protocol):
    name: str

    def fetch_current_track_info(self) -> PlaybackSnapshot | None: ...


@dataclass(frozen=True)
class SupportedApp:
    bundle_id: str
    display_name: str
    script_name: str  # AppleScript application name
    alternative_names: tuple[str, ...] = ()


SUPPORTED_APPS = (
    SupportedApp("com.apple.Music", "Apple Music", "Music",
                 ("Music", "Apple Music", "Music.app", "AppleMusic")),
    SupportedApp("com.spotify.client", "Spotify", "Spotify",
                 ("Spotify", "Spotify for Mac")),
)


def find_app(key: str) -> SupportedApp | None:
    """Look an app up by bundle id, display name or any known alias (case-insensitive)."""
    key = key.strip().lower()
    for app in SUPPORTED_APPS:
        names = (app.bundle_id, app.display_name, app.script_name, *app.alternative_names)
        if any(key == n.lower() for n in names):
            return app
    return None


def _to_float(s) -> float | None:
    if s is None:
        return None
    try:
        return float(s)
    except (TypeError, ValueError):
        return None


class BluOSSource:
    """
    BluOS player over HTTP: fetches and parses /Status (XML).
    Uses recursive lookup + tag fallbacks (name/title1, artist/title2, album/title3, totlen, state).
    """

    def __init__(self, host: str, port: int = 11000, timeout: float = 5,
                 session: requests.Session | None = None):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.name = f"BluOS ({host})"

    def _findtext_any(self, root: ET.Element, *tags: str) -> str | None:
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def fetch_current_track_info(self) -> PlaybackSnapshot | None:
        try:
            resp = self.session.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.debug("BluOS status fetch failed: %s", e)
            return None

        try:
            root = ET.fromstring(resp.text)
        except ET.ParseError as e:
            log.debug("BluOS status is not XML: %s", e)
            return None

        state = self._findtext_any(root, "state", "status", "mode")
        return PlaybackSnapshot(
            is_playing=(state or "").lower() in ("play", "stream"),
            title=self._findtext_any(root, "name", "title1", "title", "song") or "",
            artist=self._findtext_any(root, "artist", "title2") or "",
            album=self._findtext_any(root, "album", "title3") or "",
            duration=_to_float(self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")),
            source_application=self.name,
            artwork=self._findtext_any(root, "image"),
        )


# Unit separator; "|" shows up in real titles ("Live | Remastered")
_SEP = "\x1f"

_SCRIPT = r'''
tell application "{app}"
    if it is not running then
        return "OK=0"
    end if

    set ps to (player state as string)
    if ps is "stopped" then
        return "OK=0"
    end if

    set tName to (name of current track as string)
    set tArtist to (artist of current track as string)
    set tAlbum to (album of current track as string)
    set tDur to (duration of current track)
    set tPos to (player position)
    set isPlaying to (ps is "playing")
    set sep to (ASCII character 31)

    return "OK=1" & sep & tName & sep & tArtist & sep & tAlbum & sep & (tDur as string) & sep & (tPos as string) & sep & (isPlaying as string)
end tell
'''


class AppleScriptSource:
    """Apple Music / Spotify on macOS through osascript."""

    def __init__(self, app: SupportedApp, timeout: float = 5):
        self.app = app
        self.timeout = timeout
        self.name = app.display_name

    def _run(self) -> str:
        return subprocess.check_output(
            ["osascript", "-e", _SCRIPT.replace("{app}", self.app.script_name)],
            text=True,
            timeout=self.timeout,
        ).strip(" \r\n")

    def fetch_current_track_info(self) -> PlaybackSnapshot | None:
        try:
            out = self._run()
        except (OSError, subprocess.SubprocessError) as e:
            log.debug("osascript failed for %s: %s", self.name, e)
            return None

        if out == "OK=0":
            return PlaybackSnapshot(is_playing=False, title="", artist="", source_application=self.name)
        if not out.startswith("OK=1" + _SEP):
            return None

        parts = out.split(_SEP)
        if len(parts) < 7:
            log.debug("Unexpected osascript output: %r", out)
            return None
        duration = _to_float(parts[4])
        # Spotify reports milliseconds, Music seconds
        if duration is not None and self.app.bundle_id == "com.spotify.client":
            duration /= 1000.0
        return PlaybackSnapshot(
            is_playing=parts[6].strip().lower() == "true",
            title=parts[1],
            artist=parts[2],
            album=parts[3],
            duration=duration,
            source_application=self.name,
        )
