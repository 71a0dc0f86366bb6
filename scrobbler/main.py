import logging
import threading

from .config import Settings
from .custom_service import OAuthCookieService
from .dispatcher import ScrobbleDispatcher
from .errors import ScrobblerError
from .events import AuthorizationUrlReady, EventBus
from .friends import FriendActivityFetcher
from .lastfm_client import LastFMClient
from .lastfm_service import SessionKeyService
from .notifier import GotifyNotifier, WebhookNotifier
from .sources import AppleScriptSource, BluOSSource, NowPlayingSource, find_app
from .state import PlaybackTracker
from .store import JsonFileStore

log = logging.getLogger("scrobbler")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )
    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_source(settings: Settings) -> NowPlayingSource:
    if settings.now_playing_source == "bluos":
        return BluOSSource(settings.bluos_host, settings.bluos_port)
    return AppleScriptSource(find_app(settings.now_playing_source))


def build_services(settings: Settings, store, bus: EventBus) -> list:
    services = []
    if settings.lastfm_enabled:
        client = LastFMClient(settings.lastfm_api_key, settings.lastfm_api_secret,
                              timeout=settings.http_timeout)
        services.append(SessionKeyService(
            client, store, bus,
            username=settings.lastfm_username,
            password=settings.lastfm_password,
            settle_delay=settings.auth_settle_delay,
        ))
    if settings.custom_enabled:
        services.append(OAuthCookieService(settings.custom_url, settings.bluesky_handle, store, bus,
                                           timeout=settings.http_timeout))
    return services


def authorize_on_console(service) -> bool:
    """Console stand-in for the web authorization surface."""
    if isinstance(service, SessionKeyService):
        answer = input("Press Enter once you have authorized Last.fm (or type 'n' to cancel): ")
        if answer.strip().lower() == "n":
            return service.cancel_authorization()
        return service.confirm_authorization()
    if isinstance(service, OAuthCookieService):
        value = input("Paste the 'auth' cookie value from the browser (empty to cancel): ").strip()
        if not value:
            return service.cancel_authorization()
        return service.complete_authorization({"auth": value})
    return False


def sign_in(service) -> None:
    if service.restore():
        return
    prompt = threading.Thread(target=_prompt_when_ready, args=(service,), daemon=True)
    prompt.start()
    try:
        service.authenticate()
    except ScrobblerError as e:
        log.error("%s sign-in failed: %s", service.service_name, e)


def _prompt_when_ready(service) -> None:
    ready = threading.Event()
    unsubscribe = service.bus.subscribe(
        lambda e: e.service_id == service.service_id and ready.set(), AuthorizationUrlReady)
    # the URL may already be out before we subscribed
    if service.authorization_url is None and not ready.wait(30):
        unsubscribe()
        return
    unsubscribe()
    print(f"\nOpen this URL to authorize {service.service_name}:\n  {service.authorization_url}\n")
    authorize_on_console(service)


def log_friend_activity(service: SessionKeyService, settings: Settings) -> None:
    if not service.is_authenticated():
        return
    try:
        activity = FriendActivityFetcher(service).load(
            friend_limit=settings.friends_limit, track_limit=settings.friend_tracks_limit)
    except (ScrobblerError, ValueError) as e:
        log.warning("Could not load friends: %s", e)
        return
    for friend in activity.friends:
        track = activity.now_playing(friend.name)
        if track:
            log.info("%s is listening to %s - %s", friend.name, track.artist, track.title)


def main():
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    settings.validate()

    bus = EventBus()
    store = JsonFileStore(settings.store_path)
    for notifier in (WebhookNotifier.from_env(), GotifyNotifier.from_env()):
        notifier.attach(bus)  # ok if not configured; send() ignores it

    services = build_services(settings, store, bus)
    for service in services:
        sign_in(service)
        if isinstance(service, SessionKeyService):
            log_friend_activity(service, settings)

    dispatcher = ScrobbleDispatcher(services)
    tracker = PlaybackTracker(build_source(settings), dispatcher, bus)
    log.info("Starting scrobbler. Services: %s | Store: %s",
             ", ".join(f"{s.service_name} ({s.credential.state.value})" for s in services),
             settings.store_path)
    tracker.start()

    stop = threading.Event()
    try:
        while not stop.wait(settings.session_check_interval):
            for service in services:
                if isinstance(service, OAuthCookieService):
                    service.check_session()
    except KeyboardInterrupt:
        log.info("Shutting down…")
    finally:
        tracker.stop()


if __name__ == "__main__":
    main()
