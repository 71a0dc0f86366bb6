import logging
from typing import Any, Mapping
from urllib.parse import urlencode

import pylast
import requests

from .errors import DecodeError, NetworkError, RemoteApiError
from .models import SignedRequest

log = logging.getLogger("scrobbler.lastfm")

API_ROOT = "https://ws.audioscrobbler.com/2.0/"
AUTH_PAGE = "https://www.last.fm/api/auth/"
USER_AGENT = "scrobbler/0.3"

# Sent as a form-encoded POST body; everything else goes in the query string
WRITE_METHODS = frozenset({
    "auth.getSession",
    "auth.getMobileSession",
    "track.scrobble",
    "track.updateNowPlaying",
})

# Never part of the signature
_UNSIGNED = frozenset({"format", "callback", "api_sig"})


def sign(params: Mapping[str, Any], secret: str) -> str:
    """Last.fm api_sig: md5 over sorted key+value pairs (raw values) followed by the secret."""
    raw = "".join(
        f"{key}{params[key]}" for key in sorted(params) if key not in _UNSIGNED
    )
    return pylast.md5(raw + secret)


class LastFMClient:
    """Signs, sends and decodes calls to a Last.fm-compatible web service."""

    def __init__(self, api_key: str, api_secret: str, base_url: str = API_ROOT,
                 timeout: float = 10, session: requests.Session | None = None):
        if not api_key or not api_secret:
            raise ValueError("Missing Last.fm API key or secret")
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    def sign(self, params: Mapping[str, Any]) -> str:
        return sign(params, self.api_secret)

    def build(self, method: str, params: Mapping[str, Any] | None = None) -> SignedRequest:
        """Add method + api_key and compute the signature. `format` is added later, unsigned."""
        merged = {"method": method, "api_key": self.api_key}
        merged.update({k: str(v) for k, v in (params or {}).items() if v is not None})
        return SignedRequest(method=method, params=merged, signature=self.sign(merged))

    def authorization_url(self, token: str) -> str:
        return f"{AUTH_PAGE}?{urlencode({'api_key': self.api_key, 'token': token})}"

    def send(self, method: str, params: Mapping[str, Any] | None = None, *,
             allow_empty: bool = False) -> dict:
        """Perform one signed call and return the decoded JSON body.

        Raises NetworkError on transport failure, RemoteApiError when the body
        is an error envelope (or the status is not 2xx) and DecodeError when a
        2xx body is not JSON. With allow_empty=True an undecodable 2xx body is
        accepted and `{}` is returned (fire-and-forget calls).
        """
        request = self.build(method, params)
        payload = request.payload()
        try:
            if method in WRITE_METHODS:
                resp = self.session.post(self.base_url, data=payload, timeout=self.timeout)
            else:
                resp = self.session.get(self.base_url, params=payload, timeout=self.timeout)
        except requests.RequestException as e:
            log.debug("%s transport failure: %s", method, e)
            raise NetworkError(f"{method}: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and "error" in data:
            try:
                code = int(data["error"])
            except (TypeError, ValueError):
                code = resp.status_code
            message = str(data.get("message", ""))
            log.debug("%s rejected: code=%s msg=%s", method, code, message)
            raise RemoteApiError(code, message)

        if not resp.ok:
            raise RemoteApiError(resp.status_code, (resp.text or "")[:200])

        if not isinstance(data, dict):
            if allow_empty:
                return {}
            log.warning("Undecodable %s response (HTTP %s): %r",
                        method, resp.status_code, (resp.text or "")[:500])
            raise DecodeError(f"Unexpected response for {method}", resp.text)
        return data
