"""
Last.fm (session key) scrobbling service.

Authentication is the desktop token flow:

    UNKNOWN -> NEEDS_AUTH -> TOKEN_REQUESTED -> AWAITING_USER_AUTHORIZATION
            -> SESSION_REQUESTED -> AUTHENTICATED

with FAILED reachable from every non-terminal phase. FAILED stays put until
restart(). When a username + password are configured the legacy
auth.getMobileSession exchange replaces the browser step.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable

from .errors import (
    AuthorizationCancelled, DecodeError, NetworkError, NotAuthenticated,
    RemoteApiError, ScrobblerError,
)
from .events import AuthorizationUrlReady, EventBus
from .lastfm_client import LastFMClient
from .models import FriendSummary, TrackSummary
from .services import ScrobbleService, ServiceCredential

log = logging.getLogger("scrobbler.lastfm")

SESSION_KEY = "lastfm_session_key"
USERNAME_KEY = "lastfm_username"

# Last.fm needs a moment before an approved token can be exchanged
DEFAULT_SETTLE_DELAY = 3.0


class AuthPhase(str, Enum):
    UNKNOWN = "unknown"
    NEEDS_AUTH = "needs_auth"
    TOKEN_REQUESTED = "token_requested"
    AWAITING_USER_AUTHORIZATION = "awaiting_user_authorization"
    SESSION_REQUESTED = "session_requested"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


_IN_PROGRESS = {
    AuthPhase.TOKEN_REQUESTED,
    AuthPhase.AWAITING_USER_AUTHORIZATION,
    AuthPhase.SESSION_REQUESTED,
}


class SessionKeyService(ScrobbleService):
    service_id = "lastfm"
    service_name = "Last.fm"

    def __init__(self, client: LastFMClient, store, bus: EventBus | None = None, *,
                 username: str | None = None, password: str | None = None,
                 settle_delay: float = DEFAULT_SETTLE_DELAY,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time):
        super().__init__(bus)
        self.client = client
        self.store = store
        self.username = username
        self.password = password
        self.settle_delay = settle_delay
        self._sleep = sleep
        self._clock = clock

        self._phase = AuthPhase.UNKNOWN
        self._session_key: str | None = None
        self._token: str | None = None
        self._confirmed = False
        self._decision = threading.Event()
        self._finished = threading.Event()

    # -------- state --------
    @property
    def phase(self) -> AuthPhase:
        with self._lock:
            return self._phase

    def _enter(self, phase: AuthPhase, reason: str | None = None) -> None:
        with self._lock:
            self._phase = phase
            if phase is AuthPhase.AUTHENTICATED:
                credential = ServiceCredential.authenticated(self._session_key)
            elif phase is AuthPhase.FAILED:
                credential = ServiceCredential.failed(reason or "unknown error")
            elif phase in _IN_PROGRESS:
                credential = ServiceCredential.pending()
            else:
                credential = ServiceCredential.unauthenticated()
            if phase not in _IN_PROGRESS:
                self._token = None
                self._authorization_url = None
        log.debug("Last.fm auth phase -> %s", phase.value)
        self._set_credential(credential)
        if phase not in _IN_PROGRESS:
            self._finished.set()

    def _fail(self, reason: str) -> None:
        log.error("Last.fm authentication failed: %s", reason)
        self._enter(AuthPhase.FAILED, reason)

    def restart(self) -> None:
        """Leave FAILED so authenticate() can run a fresh handshake."""
        with self._lock:
            if self._phase is not AuthPhase.FAILED:
                return
        self._enter(AuthPhase.NEEDS_AUTH)

    # -------- authentication --------
    def restore(self) -> bool:
        key = self.store.get(SESSION_KEY)
        if not self.username:
            self.username = self.store.get(USERNAME_KEY)
        if not key:
            self._enter(AuthPhase.NEEDS_AUTH)
            return False

        params = {"sk": key}
        if self.username:
            params["user"] = self.username
        try:
            info = self.client.send("user.getInfo", params)
        except RemoteApiError as e:
            log.info("Saved Last.fm session rejected (%s); re-authentication needed", e)
            self.store.delete(SESSION_KEY)
            with self._lock:
                self._session_key = None
            self._enter(AuthPhase.NEEDS_AUTH)
            return False
        except (NetworkError, DecodeError) as e:
            # Can't tell; keep the key until the API says otherwise
            log.warning("Could not validate saved Last.fm session: %s", e)
            info = {}

        name = (info.get("user") or {}).get("name") if isinstance(info, dict) else None
        if name and not self.username:
            self.username = name
        with self._lock:
            self._session_key = key
        self._enter(AuthPhase.AUTHENTICATED)
        log.info("Using saved Last.fm session%s", f" for {self.username}" if self.username else "")
        return True

    def authenticate(self, timeout: float | None = None) -> bool:
        with self._lock:
            phase = self._phase
        if phase is AuthPhase.UNKNOWN and self.restore():
            return True
        if phase is AuthPhase.AUTHENTICATED:
            return True
        if phase is AuthPhase.FAILED:
            log.info("Last.fm authentication previously failed; call restart() first")
            return False
        if phase in _IN_PROGRESS:
            self._finished.wait(timeout)
            return self.is_authenticated()

        self._finished.clear()
        if self.username and self.password:
            return self._authenticate_with_password()
        return self._authenticate_with_token(timeout)

    def _authenticate_with_token(self, timeout: float | None) -> bool:
        with self._lock:
            self._confirmed = False
            self._decision.clear()
        self._enter(AuthPhase.TOKEN_REQUESTED)
        try:
            token = _require(self.client.send("auth.getToken"), "token")
        except ScrobblerError as e:
            self._fail(str(e))
            raise

        url = self.client.authorization_url(token)
        with self._lock:
            self._token = token
            self._authorization_url = url
        self._enter(AuthPhase.AWAITING_USER_AUTHORIZATION)
        log.info("Authorize this application at %s", url)
        self.bus.publish(AuthorizationUrlReady(self.service_id, url))

        if not self._decision.wait(timeout):
            self._fail("timed out")
            return False
        with self._lock:
            confirmed = self._confirmed
            phase = self._phase
        if not confirmed:
            if phase is AuthPhase.FAILED:
                raise AuthorizationCancelled()
            return False  # signed out while waiting

        # Approval takes a moment to propagate on the Last.fm side
        self._sleep(self.settle_delay)
        with self._lock:
            if self._phase is not AuthPhase.AWAITING_USER_AUTHORIZATION:
                # signed out or cancelled while settling
                return False
        self._enter(AuthPhase.SESSION_REQUESTED)
        try:
            session = _require(self.client.send("auth.getSession", {"token": token}), "session")
        except ScrobblerError as e:
            self._fail(str(e))
            raise
        return self._store_session(session)

    def _authenticate_with_password(self) -> bool:
        log.info("Using Last.fm username + password auth")
        self._enter(AuthPhase.SESSION_REQUESTED)
        try:
            session = _require(self.client.send(
                "auth.getMobileSession",
                {"username": self.username, "password": self.password},
            ), "session")
        except ScrobblerError as e:
            self._fail(str(e))
            raise
        return self._store_session(session)

    def _store_session(self, session: Any) -> bool:
        try:
            key = _require(session, "key")
        except DecodeError as e:
            self._fail(str(e))
            raise
        name = session.get("name")
        with self._lock:
            self._session_key = key
            if name:
                self.username = name
        self.store.set(SESSION_KEY, key)
        if name:
            self.store.set(USERNAME_KEY, name)
        self._enter(AuthPhase.AUTHENTICATED)
        log.info("Last.fm authentication completed%s", f" for {name}" if name else "")
        return True

    def confirm_authorization(self) -> bool:
        """The user approved the token in the browser."""
        with self._lock:
            if self._phase is not AuthPhase.AWAITING_USER_AUTHORIZATION:
                return False
            self._confirmed = True
        self._decision.set()
        return True

    def cancel_authorization(self) -> bool:
        with self._lock:
            if self._phase is not AuthPhase.AWAITING_USER_AUTHORIZATION:
                return False
            self._confirmed = False
        self._fail("cancelled")
        self._decision.set()
        return True

    def sign_out(self) -> None:
        with self._lock:
            self._session_key = None
            waiting = self._phase is AuthPhase.AWAITING_USER_AUTHORIZATION
            self._confirmed = False
        self.store.delete(SESSION_KEY)
        self._enter(AuthPhase.NEEDS_AUTH)
        if waiting:
            self._decision.set()
        log.info("Signed out of Last.fm")

    # -------- scrobbling --------
    def _require_session(self) -> str:
        with self._lock:
            key = self._session_key if self._phase is AuthPhase.AUTHENTICATED else None
        if not key:
            raise NotAuthenticated("No Last.fm session key")
        return key

    def _call(self, method: str, params: dict, **kwargs) -> dict:
        try:
            return self.client.send(method, params, **kwargs)
        except RemoteApiError as e:
            if e.is_auth_error:
                self._drop_session(params.get("sk"), e)
                raise NotAuthenticated(str(e)) from e
            raise

    def _drop_session(self, used_key: str | None, error: RemoteApiError) -> None:
        with self._lock:
            # A late reply for a key we already replaced must not clear the new one
            if used_key is None or used_key != self._session_key:
                return
            self._session_key = None
        log.error("Last.fm session no longer valid: %s", error)
        self.store.delete(SESSION_KEY)
        self._enter(AuthPhase.NEEDS_AUTH)

    def scrobble(self, artist: str, track: str, album: str) -> bool:
        sk = self._require_session()
        data = self._call("track.scrobble", {
            "artist": artist,
            "track": track,
            "album": album,
            "timestamp": int(self._clock()),
            "sk": sk,
        })
        try:
            accepted = int(data["scrobbles"]["@attr"]["accepted"])
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Unexpected track.scrobble response: %r", data)
            raise DecodeError("track.scrobble response has no acceptance count", repr(data)) from e
        if accepted != 1:
            log.info("Last.fm ignored scrobble for %s - %s", artist, track)
        return accepted == 1

    def update_now_playing(self, artist: str, track: str, album: str) -> bool:
        sk = self._require_session()
        self._call("track.updateNowPlaying", {
            "artist": artist,
            "track": track,
            "album": album,
            "sk": sk,
        }, allow_empty=True)
        return True

    # -------- social --------
    def get_friends(self, page: int = 1, limit: int = 50, username: str | None = None) -> list[FriendSummary]:
        sk = self._require_session()
        user = username or self.username
        if not user:
            raise ValueError("Missing Last.fm username")
        data = self._call("user.getFriends", {"user": user, "sk": sk, "page": page, "limit": limit})
        try:
            users = data["friends"].get("user", [])
        except (KeyError, AttributeError) as e:
            raise DecodeError("user.getFriends response has no friends", repr(data)) from e
        return [_friend_from_json(u) for u in _as_list(users)]

    def get_recent_tracks(self, username: str, page: int = 1, limit: int = 50) -> list[TrackSummary]:
        data = self.client.send("user.getRecentTracks", {"user": username, "page": page, "limit": limit})
        try:
            tracks = data["recenttracks"].get("track", [])
        except (KeyError, AttributeError) as e:
            raise DecodeError("user.getRecentTracks response has no tracks", repr(data)) from e
        return [_track_from_json(t) for t in _as_list(tracks)]


# -------------------------
# JSON helpers
# -------------------------
def _require(data: Any, key: str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise DecodeError(f"Response is missing '{key}'", repr(data))
    return data[key]


def _as_list(value: Any) -> list:
    # Last.fm returns a bare object instead of a one-element list
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    return list(value)


def _text(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("#text") or value.get("name")
    return value or None


def _to_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _image_url(images: Any) -> str | None:
    # Images come smallest first; take the biggest one that has a URL
    for image in reversed(_as_list(images)):
        url = image.get("#text") if isinstance(image, dict) else None
        if url:
            return url
    return None


def _friend_from_json(data: dict) -> FriendSummary:
    registered = data.get("registered")
    if isinstance(registered, dict):
        registered = registered.get("unixtime")
    return FriendSummary(
        name=data.get("name", ""),
        realname=data.get("realname") or None,
        url=data.get("url"),
        image_url=_image_url(data.get("image")),
        country=data.get("country") or None,
        playcount=_to_int(data.get("playcount")),
        registered=_to_int(registered),
    )


def _track_from_json(data: dict) -> TrackSummary:
    attr = data.get("@attr") or {}
    date = data.get("date") or {}
    return TrackSummary(
        artist=_text(data.get("artist")) or "",
        title=data.get("name", ""),
        album=_text(data.get("album")),
        url=data.get("url"),
        image_url=_image_url(data.get("image")),
        now_playing=str(attr.get("nowplaying", "")).lower() == "true",
        played_at=_to_int(date.get("uts")) if isinstance(date, dict) else None,
    )
