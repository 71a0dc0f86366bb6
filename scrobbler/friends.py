from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .lastfm_service import SessionKeyService
from .models import FriendSummary, TrackSummary

log = logging.getLogger("scrobbler.friends")


@dataclass
class FriendActivity:
    friends: list[FriendSummary] = field(default_factory=list)
    tracks: dict[str, list[TrackSummary]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)  # friend name -> message

    def now_playing(self, name: str) -> TrackSummary | None:
        for track in self.tracks.get(name, []):
            if track.now_playing:
                return track
        return None


class FriendActivityFetcher:
    """Friend list plus each friend's latest tracks, fetched in parallel.

    One friend's failed track lookup is recorded in ``errors`` and leaves the
    tracks already loaded for everybody else (including that friend's tracks
    from an earlier load) in place.
    """

    def __init__(self, service: SessionKeyService, max_workers: int = 8):
        self.service = service
        self.max_workers = max_workers
        self._lock = threading.Lock()
        self._activity = FriendActivity()
        self._last_load = (1, 10, 5)

    @property
    def activity(self) -> FriendActivity:
        with self._lock:
            return FriendActivity(list(self._activity.friends), dict(self._activity.tracks),
                                  dict(self._activity.errors))

    def get_friends(self, page: int = 1, limit: int = 10) -> list[FriendSummary]:
        return self.service.get_friends(page=page, limit=limit)

    def get_recent_tracks(self, username: str, limit: int = 5) -> list[TrackSummary]:
        return self.service.get_recent_tracks(username, page=1, limit=limit)

    def load(self, page: int = 1, friend_limit: int = 10, track_limit: int = 5) -> FriendActivity:
        with self._lock:
            self._last_load = (page, friend_limit, track_limit)
        log.debug("Loading %s friends", friend_limit)
        friends = self.get_friends(page=page, limit=friend_limit)
        log.debug("Loaded %s friends", len(friends))

        tracks: dict[str, list[TrackSummary]] = {}
        errors: dict[str, str] = {}
        if friends:
            workers = max(1, min(self.max_workers, len(friends)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="friends") as pool:
                futures = {f.name: pool.submit(self.get_recent_tracks, f.name, track_limit) for f in friends}
                for name, future in futures.items():
                    try:
                        tracks[name] = future.result()
                    except Exception as e:
                        log.warning("Error loading tracks for %s: %s", name, e)
                        errors[name] = str(e) or type(e).__name__

        with self._lock:
            previous = self._activity.tracks
            merged = {f.name: previous[f.name] for f in friends if f.name in previous}
            merged.update(tracks)
            self._activity = FriendActivity(friends, merged, errors)
        return self.activity

    def refresh(self) -> FriendActivity:
        with self._lock:
            page, friend_limit, track_limit = self._last_load
        return self.load(page, friend_limit, track_limit)
