"""Now-playing tracker and multi-service scrobble engine."""

from .dispatcher import ScrobbleDispatcher
from .errors import (
    AuthorizationCancelled, DecodeError, NetworkError, NotAuthenticated,
    RemoteApiError, ScrobblerError,
)
from .events import EventBus
from .friends import FriendActivityFetcher
from .lastfm_client import LastFMClient
from .models import Operation, PlaybackSnapshot, PlaySession, ScrobbleOutcome
from .services import Revocable, ScrobbleService, ServiceCredential
from .state import PlaybackTracker

__version__ = "0.3.0"
