from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Operation(str, Enum):
    SCROBBLE = "scrobble"
    UPDATE_NOW_PLAYING = "update_now_playing"


# -------------------------
# What the now-playing source reports
# -------------------------
@dataclass(frozen=True)
class PlaybackSnapshot:
    is_playing: bool
    title: str
    artist: str
    album: str = ""
    duration: float | None = None  # seconds
    source_application: str = ""
    artwork: Any = field(default=None, compare=False, repr=False)

    @property
    def is_complete(self) -> bool:
        return self.is_playing and bool(self.title) and bool(self.artist)

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"

    def same_track(self, other: PlaybackSnapshot | None) -> bool:
        # Only artist + title decide identity; album/duration/artwork may change mid-play
        if other is None:
            return False
        return self.artist == other.artist and self.title == other.title


@dataclass
class PlaySession:
    """One continuously playing track, as seen by the tracker."""

    session_id: int
    track: PlaybackSnapshot
    started_at: float
    scrobble_eligible_at: float | None = None
    has_scrobbled: bool = False

    def mark_scrobbled(self) -> bool:
        """Flip has_scrobbled. Returns True only for the one false→true transition."""
        if self.has_scrobbled:
            return False
        self.has_scrobbled = True
        return True


@dataclass(frozen=True)
class SignedRequest:
    method: str
    params: dict[str, str]
    signature: str

    def payload(self) -> dict[str, str]:
        return {**self.params, "api_sig": self.signature, "format": "json"}


@dataclass(frozen=True)
class ScrobbleOutcome:
    operation: Operation
    succeeded: frozenset[str] = frozenset()
    failed: frozenset[str] = frozenset()
    errors: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def summary(self) -> str | None:
        if not self.failed:
            return None
        parts = []
        for service_id in sorted(self.failed):
            reason = self.errors.get(service_id)
            parts.append(f"{service_id} ({reason})" if reason else service_id)
        return f"{self.operation.value} failed for: " + ", ".join(parts)


@dataclass(frozen=True)
class FriendSummary:
    name: str
    realname: str | None = None
    url: str | None = None
    image_url: str | None = None
    country: str | None = None
    playcount: int | None = None
    registered: int | None = None  # unix time


@dataclass(frozen=True)
class TrackSummary:
    artist: str
    title: str
    album: str | None = None
    url: str | None = None
    image_url: str | None = None
    now_playing: bool = False
    played_at: int | None = None  # unix time, absent while now playing
