"""
Custom scrobble server authenticated with session cookies.

The cookies come out of a browser OAuth login (Bluesky handle): the web
surface opens ``/oauth/login?handle=...`` and reports every navigation back
through report_navigation(). When the browser lands on the service host
again (anywhere but the login page) the flow is complete and the session
cookies are kept, persisted per handle.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlencode, urlparse

import requests

from .errors import AuthorizationCancelled, NetworkError, NotAuthenticated, RemoteApiError
from .events import AuthorizationUrlReady, EventBus
from .services import Revocable, ScrobbleService, ServiceCredential

log = logging.getLogger("scrobbler.custom")

AUTH_COOKIE_HINTS = ("auth", "session", "jwt", "token", "access", "bearer")


class OAuthPhase(str, Enum):
    UNKNOWN = "unknown"
    NEEDS_AUTH = "needs_auth"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


def cookie_store_key(handle: str) -> str:
    return f"oauth_cookies:{handle}"


def _domain_matches(domain: str, host: str) -> bool:
    domain = domain.lstrip(".").lower()
    return host == domain or host.endswith("." + domain)


def normalize_cookies(cookies: Iterable[Mapping[str, Any]] | Mapping[str, str] | None,
                      default_domain: str) -> list[dict]:
    """Accept either {name: value} or a list of cookie dicts; return cookie dicts."""
    if not cookies:
        return []
    if isinstance(cookies, Mapping):
        return [{"name": k, "value": v, "domain": default_domain, "path": "/"} for k, v in cookies.items()]
    result = []
    for c in cookies:
        if not c.get("name"):
            continue
        result.append({
            "name": c["name"],
            "value": c.get("value", ""),
            "domain": c.get("domain") or default_domain,
            "path": c.get("path") or "/",
        })
    return result


def select_auth_cookies(cookies: list[dict], host: str) -> list[dict]:
    """Pick the session cookies: the 'auth' cookie, else auth-looking names, else all of ours."""
    ours = [c for c in cookies if _domain_matches(c["domain"], host)]
    auth = [c for c in ours if c["name"].lower() == "auth"]
    if auth:
        return auth[:1]
    hinted = [c for c in ours if any(h in c["name"].lower() for h in AUTH_COOKIE_HINTS)]
    return hinted or ours


class OAuthCookieService(ScrobbleService, Revocable):
    service_id = "custom"
    service_name = "Custom Scrobbler"

    def __init__(self, base_url: str, handle: str, store, bus: EventBus | None = None, *,
                 timeout: float = 10, session: requests.Session | None = None,
                 clock: Callable[[], float] = time.time):
        super().__init__(bus)
        if not handle:
            raise ValueError("Missing handle for the custom scrobbler")
        self.base_url = base_url.rstrip("/")
        self.host = (urlparse(self.base_url).hostname or "").lower()
        self.handle = handle
        self.store = store
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock

        self._phase = OAuthPhase.UNKNOWN
        self._cookies: list[dict] = []
        self._finished = threading.Event()

    # -------- state --------
    @property
    def phase(self) -> OAuthPhase:
        with self._lock:
            return self._phase

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/oauth/login?{urlencode({'handle': self.handle})}"

    def _enter(self, phase: OAuthPhase, reason: str | None = None) -> None:
        with self._lock:
            self._phase = phase
            if phase is OAuthPhase.AUTHENTICATED:
                credential = ServiceCredential.authenticated(self._cookie_header())
            elif phase is OAuthPhase.FAILED:
                credential = ServiceCredential.failed(reason or "unknown error")
            elif phase is OAuthPhase.AUTHENTICATING:
                credential = ServiceCredential.pending()
            else:
                credential = ServiceCredential.unauthenticated()
            if phase is not OAuthPhase.AUTHENTICATING:
                self._authorization_url = None
        log.debug("Custom scrobbler auth phase -> %s", phase.value)
        self._set_credential(credential)
        if phase is not OAuthPhase.AUTHENTICATING:
            self._finished.set()

    def _cookie_header(self) -> str:
        return "; ".join(f"{c['name']}={c['value']}" for c in self._cookies)

    def _headers(self) -> dict:
        with self._lock:
            return {"Cookie": self._cookie_header()} if self._cookies else {}

    def _clear_stored(self) -> None:
        with self._lock:
            self._cookies = []
        self.store.delete(cookie_store_key(self.handle))

    # -------- session validation --------
    def restore(self) -> bool:
        stored = self.store.get(cookie_store_key(self.handle)) or []
        with self._lock:
            self._cookies = normalize_cookies(stored, self.host)
        if not self._cookies:
            log.debug("No stored cookies for %s", self.handle)
            self._enter(OAuthPhase.NEEDS_AUTH)
            return False
        log.debug("Found %s stored cookies for %s", len(self._cookies), self.handle)
        return self._check_cookies()

    def check_session(self) -> bool:
        """Periodic re-check; only checks while we believe we are signed in."""
        if self.phase is not OAuthPhase.AUTHENTICATED:
            return False
        return self._check_cookies()

    def _check_cookies(self) -> bool:
        try:
            resp = self.session.get(f"{self.base_url}/api/test", headers=self._headers(),
                                    timeout=self.timeout)
        except requests.RequestException as e:
            # Server unreachable says nothing about the cookies; keep them
            log.warning("Custom scrobbler session check failed: %s", e)
            self._enter(OAuthPhase.AUTHENTICATED)
            return True

        if resp.ok or resp.status_code == 404:
            # 404: server has no session endpoint, the cookies are all we know
            self._enter(OAuthPhase.AUTHENTICATED)
            return True

        log.info("Custom scrobbler session rejected (HTTP %s); sign-in needed", resp.status_code)
        self._clear_stored()
        self._enter(OAuthPhase.NEEDS_AUTH)
        return False

    # -------- authentication --------
    def authenticate(self, timeout: float | None = None) -> bool:
        with self._lock:
            phase = self._phase
        if phase is OAuthPhase.UNKNOWN and self.restore():
            return True
        if phase is OAuthPhase.AUTHENTICATED:
            return True
        if phase is not OAuthPhase.AUTHENTICATING:
            self._finished.clear()
            with self._lock:
                self._authorization_url = self.login_url
            self._enter(OAuthPhase.AUTHENTICATING)
            log.info("Sign in to the custom scrobbler at %s", self.login_url)
            self.bus.publish(AuthorizationUrlReady(self.service_id, self.login_url))

        if not self._finished.wait(timeout):
            self._fail("timed out")
            return False
        credential = self.credential
        if self.phase is OAuthPhase.FAILED and credential.reason == "cancelled":
            raise AuthorizationCancelled()
        return credential.is_authenticated

    def report_navigation(self, url: str, cookies: Iterable[Mapping[str, Any]] | Mapping[str, str] | None = None) -> bool:
        """Feed a finished page load from the web surface. Returns True once sign-in completed."""
        if self.phase is not OAuthPhase.AUTHENTICATING:
            return False
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if host == self.host and not parsed.path.startswith("/oauth/login"):
            log.debug("OAuth redirect back to %s detected; extracting cookies", host)
            return self.complete_authorization(cookies)
        log.debug("OAuth navigation to %s; still waiting", url)
        return False

    def complete_authorization(self, cookies: Iterable[Mapping[str, Any]] | Mapping[str, str] | None) -> bool:
        if self.phase is not OAuthPhase.AUTHENTICATING:
            return False
        selected = select_auth_cookies(normalize_cookies(cookies, self.host), self.host)
        if not selected:
            self._fail("No authentication cookies found")
            return False
        log.debug("Using cookies %s", [c["name"] for c in selected])
        with self._lock:
            self._cookies = selected
        self.store.set(cookie_store_key(self.handle), selected)
        self._enter(OAuthPhase.AUTHENTICATED)
        log.info("Signed in to the custom scrobbler as %s", self.handle)
        return True

    def fail_authorization(self, reason: str) -> bool:
        if self.phase is not OAuthPhase.AUTHENTICATING:
            return False
        self._fail(reason)
        return True

    def cancel_authorization(self) -> bool:
        return self.fail_authorization("cancelled")

    def _fail(self, reason: str) -> None:
        log.error("Custom scrobbler authentication failed: %s", reason)
        self._enter(OAuthPhase.FAILED, reason)

    def sign_out(self) -> None:
        self._clear_stored()
        self._enter(OAuthPhase.NEEDS_AUTH)
        log.info("Signed out of the custom scrobbler")

    def revoke(self) -> None:
        """Log out on the server (best effort), then forget the cookies locally."""
        url = f"{self.base_url}/oauth/logout"
        headers = {**self._headers(), "Accept": "application/json"}
        try:
            resp = self.session.post(url, headers=headers, timeout=self.timeout)
            log.debug("Logout response status: %s", resp.status_code)
            if resp.status_code == 405:
                resp = self.session.get(url, headers=headers, timeout=self.timeout)
                log.debug("Logout (GET) response status: %s", resp.status_code)
        except requests.RequestException as e:
            log.warning("Logout request failed: %s", e)
        self.sign_out()

    # -------- scrobbling --------
    def _post(self, method: str, body: Any) -> bool:
        with self._lock:
            if self._phase is not OAuthPhase.AUTHENTICATED or not self._cookies:
                raise NotAuthenticated("Custom scrobbler is not signed in")
            sent_with = list(self._cookies)
        headers = {"Cookie": "; ".join(f"{c['name']}={c['value']}" for c in sent_with)}
        url = f"{self.base_url}/api/{method}"
        log.debug("Custom scrobbler: %s", method)
        try:
            resp = self.session.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"{method}: {e}") from e

        if resp.status_code in (401, 403):
            with self._lock:
                stale = sent_with == self._cookies
            if stale:
                self._clear_stored()
                self._enter(OAuthPhase.NEEDS_AUTH)
            raise NotAuthenticated(f"Custom scrobbler rejected the session (HTTP {resp.status_code})")
        if not resp.ok:
            text = (resp.text or "")[:200]
            log.warning("Custom scrobbler HTTP %s for %s: %s", resp.status_code, method, text)
            raise RemoteApiError(resp.status_code, text)
        return True

    def scrobble(self, artist: str, track: str, album: str) -> bool:
        item = {"artist": artist, "track": track, "album": album,
                "timestamp": str(int(self._clock()))}
        # The server takes scrobbles as a batch
        return self._post("track.scrobble", [item])

    def update_now_playing(self, artist: str, track: str, album: str) -> bool:
        return self._post("track.updateNowPlaying", {"artist": artist, "track": track, "album": album})
