"""
Uniform surface over the remote scrobbling services.

Every backend (Last.fm style session key, cookie/OAuth custom API) exposes the
same capability set so the dispatcher can fan out without knowing which one
it is talking to. Extra capabilities are separate interfaces: callers check
``isinstance(service, Revocable)`` instead of testing concrete types.
"""

from __future__ import annotations

import abc
import threading
from dataclasses import dataclass
from enum import Enum

from .events import AuthStatusChanged, EventBus


class CredentialState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class ServiceCredential:
    state: CredentialState
    token: str | None = None
    reason: str | None = None

    @classmethod
    def unauthenticated(cls) -> ServiceCredential:
        return cls(CredentialState.UNAUTHENTICATED)

    @classmethod
    def pending(cls) -> ServiceCredential:
        return cls(CredentialState.PENDING)

    @classmethod
    def authenticated(cls, token: str) -> ServiceCredential:
        return cls(CredentialState.AUTHENTICATED, token=token)

    @classmethod
    def failed(cls, reason: str) -> ServiceCredential:
        return cls(CredentialState.FAILED, reason=reason)

    @property
    def is_authenticated(self) -> bool:
        return self.state is CredentialState.AUTHENTICATED


class ScrobbleService(abc.ABC):
    service_id: str = ""
    service_name: str = ""

    def __init__(self, bus: EventBus | None = None):
        self.bus = bus or EventBus()
        self._lock = threading.RLock()
        self._credential = ServiceCredential.unauthenticated()
        self._authorization_url: str | None = None

    @property
    def credential(self) -> ServiceCredential:
        with self._lock:
            return self._credential

    @property
    def authorization_url(self) -> str | None:
        """URL the user has to open to finish the current handshake, if one is waiting."""
        with self._lock:
            return self._authorization_url

    def is_authenticated(self) -> bool:
        """Last known credential state. Never does I/O."""
        return self.credential.is_authenticated

    def _set_credential(self, credential: ServiceCredential) -> None:
        with self._lock:
            changed = credential != self._credential
            self._credential = credential
        if changed:
            self.bus.publish(AuthStatusChanged(self.service_id, credential.state.value, credential.reason))

    @abc.abstractmethod
    def restore(self) -> bool:
        """Rehydrate a persisted credential and validate it against the remote side."""

    @abc.abstractmethod
    def authenticate(self, timeout: float | None = None) -> bool:
        """Drive the handshake until it succeeds, fails, or the caller's timeout elapses."""

    @abc.abstractmethod
    def scrobble(self, artist: str, track: str, album: str) -> bool: ...

    @abc.abstractmethod
    def update_now_playing(self, artist: str, track: str, album: str) -> bool: ...

    @abc.abstractmethod
    def sign_out(self) -> None: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.service_id} {self.credential.state.value}>"


class Revocable(abc.ABC):
    """Services that can invalidate their credential on the remote side."""

    @abc.abstractmethod
    def revoke(self) -> None: ...
