import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from .models import Operation, ScrobbleOutcome
from .services import ScrobbleService

log = logging.getLogger("scrobbler.dispatcher")


class ScrobbleDispatcher:
    """Fan one scrobble / now-playing call out to every enabled service at once.

    Each service runs on its own worker; the call returns only after all of
    them finished. A service that raises or answers False ends up in
    ``outcome.failed`` and never affects its siblings or the caller.
    """

    def __init__(self, services: Iterable[ScrobbleService] = (), enabled: Iterable[str] | None = None):
        self._lock = threading.Lock()
        self._services: dict[str, ScrobbleService] = {}
        self._enabled: set[str] = set()
        for service in services:
            self.add_service(service)
        if enabled is not None:
            self._enabled = set(enabled) & set(self._services)

    def add_service(self, service: ScrobbleService, enabled: bool = True) -> None:
        with self._lock:
            self._services[service.service_id] = service
            if enabled:
                self._enabled.add(service.service_id)

    def service(self, service_id: str) -> ScrobbleService | None:
        with self._lock:
            return self._services.get(service_id)

    @property
    def services(self) -> list[ScrobbleService]:
        with self._lock:
            return list(self._services.values())

    def set_enabled(self, service_id: str, enabled: bool) -> None:
        with self._lock:
            if service_id not in self._services:
                raise KeyError(service_id)
            if enabled:
                self._enabled.add(service_id)
            else:
                self._enabled.discard(service_id)

    def enabled_services(self) -> list[ScrobbleService]:
        with self._lock:
            return [s for sid, s in self._services.items() if sid in self._enabled]

    def dispatch(self, operation: Operation, artist: str, track: str, album: str) -> ScrobbleOutcome:
        services = self.enabled_services()
        if not services:
            log.debug("No enabled services for %s", operation.value)
            return ScrobbleOutcome(operation)

        succeeded: set[str] = set()
        failed: set[str] = set()
        errors: dict[str, str] = {}

        with ThreadPoolExecutor(max_workers=len(services), thread_name_prefix="dispatch") as pool:
            futures = {
                service.service_id: pool.submit(self._invoke, service, operation, artist, track, album)
                for service in services
            }
            for service_id, future in futures.items():
                try:
                    ok = future.result()
                except Exception as e:
                    log.warning("%s %s failed: %s", service_id, operation.value, e)
                    failed.add(service_id)
                    errors[service_id] = str(e) or type(e).__name__
                    continue
                if ok:
                    succeeded.add(service_id)
                else:
                    failed.add(service_id)
                    errors[service_id] = "not accepted"

        outcome = ScrobbleOutcome(operation, frozenset(succeeded), frozenset(failed), errors)
        log.info("%s %s - %s: ok=%s failed=%s", operation.value, artist, track,
                 sorted(succeeded) or "-", sorted(failed) or "-")
        return outcome

    @staticmethod
    def _invoke(service: ScrobbleService, operation: Operation, artist: str, track: str, album: str) -> bool:
        if operation is Operation.SCROBBLE:
            return bool(service.scrobble(artist, track, album))
        return bool(service.update_now_playing(artist, track, album))
