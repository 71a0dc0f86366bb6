"""
Error taxonomy shared by the API clients, services and the tracker.

Callers branch on the class: NetworkError is the only one worth retrying,
RemoteApiError carries the code and message the remote API sent back verbatim.
"""

from __future__ import annotations

import pylast

# Last.fm codes that mean the session key (or token) is no longer usable
_AUTH_CODES = {
    pylast.STATUS_AUTH_FAILED,
    pylast.STATUS_INVALID_SK,
    pylast.STATUS_TOKEN_UNAUTHORIZED,
    pylast.STATUS_TOKEN_EXPIRED,
}
_RETRYABLE_CODES = {
    pylast.STATUS_OPERATION_FAILED,
    pylast.STATUS_OFFLINE,
    pylast.STATUS_TEMPORARILY_UNAVAILABLE,
    pylast.STATUS_RATE_LIMIT_EXCEEDED,
}


class ScrobblerError(Exception):
    """Base class for everything this package raises on purpose."""


class NetworkError(ScrobblerError): ...


class NotAuthenticated(ScrobblerError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationCancelled(ScrobblerError):
    def __init__(self, message: str = "Authorization was cancelled by user"):
        super().__init__(message)


class RemoteApiError(ScrobblerError):
    """The remote API explicitly rejected the call."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"API error {self.code}: {self.message}"

    @property
    def is_auth_error(self) -> bool:
        return self.code in _AUTH_CODES

    @property
    def is_rate_limited(self) -> bool:
        return self.code == pylast.STATUS_RATE_LIMIT_EXCEEDED

    @property
    def is_retryable(self) -> bool:
        return self.code in _RETRYABLE_CODES


class DecodeError(ScrobblerError):
    """Response had an unexpected shape. Keeps the raw body for diagnosis."""

    def __init__(self, message: str, raw: str | bytes | None = None):
        super().__init__(message)
        self.raw = raw
