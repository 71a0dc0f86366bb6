from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable

from .dispatcher import ScrobbleDispatcher
from .events import EventBus, NowPlayingDispatched, ScrobbleCompleted, TrackChanged, TrackCleared
from .models import Operation, PlaybackSnapshot, PlaySession
from .sources import NowPlayingSource

log = logging.getLogger("scrobbler.tracker")

POLL_INTERVAL = 10.0
# Last.fm guideline: scrobble at halfway or 240s (4min), whichever comes first;
# tracks of 30s or less are never scrobbled.
MIN_SCROBBLE_DURATION = 30.0
MAX_SCROBBLE_DELAY = 240.0
# Extra evaluations after a source switch, while the new source settles
SWITCH_FOLLOWUPS = (0.5, 1.5)

NO_TRACK = "No track playing"


def scrobble_delay(duration: float | None) -> float | None:
    """Seconds until a track becomes scrobble-eligible, or None if it never does."""
    if duration is None or duration <= MIN_SCROBBLE_DURATION:
        return None
    return min(duration / 2, MAX_SCROBBLE_DELAY)


@dataclass(frozen=True)
class TrackerStatus:
    current_track: str
    last_scrobbled: str | None
    error_message: str | None
    source_name: str
    is_tracking: bool


class PlaybackTracker:
    """Decides what is playing and when it counts as a scrobble.

    Poll ticks, push signals, timer callbacks and source switches can arrive
    on different threads; all of them go through one lock that guards the
    session and the status fields. Network calls run on the executor, never
    under the lock.

    Fetches are numbered when they start; a result that finishes after a
    newer one was applied is dropped.

    Each play session scrobbles at most once: ``has_scrobbled`` is flipped
    before the dispatch is submitted and a failed scrobble is not retried.
    """

    def __init__(self, source: NowPlayingSource, dispatcher: ScrobbleDispatcher,
                 bus: EventBus | None = None, *,
                 poll_interval: float = POLL_INTERVAL,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer,
                 executor: Executor | None = None,
                 clock: Callable[[], float] = time.time,
                 switch_followups: tuple[float, ...] = SWITCH_FOLLOWUPS):
        self.dispatcher = dispatcher
        self.bus = bus or EventBus()
        self.poll_interval = poll_interval
        self._timer_factory = timer_factory
        self._clock = clock
        self._switch_followups = switch_followups
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="scrobble-io")
        self._executor_closed = False

        self._lock = threading.RLock()
        self._source = source
        self._session: PlaySession | None = None
        self._session_ids = itertools.count(1)
        self._fetch_seq = 0
        self._applied_seq = 0
        self._timer: threading.Timer | None = None
        self._followups: list[threading.Timer] = []
        self._stopped = threading.Event()
        self._poll_thread: threading.Thread | None = None

        self.current_track = NO_TRACK
        self.last_scrobbled: str | None = None
        self.error_message: str | None = None

    # -------- observation --------
    @property
    def source(self) -> NowPlayingSource:
        with self._lock:
            return self._source

    @property
    def session(self) -> PlaySession | None:
        """Copy of the active session (the live one never leaves the tracker)."""
        with self._lock:
            return replace(self._session) if self._session else None

    def status(self) -> TrackerStatus:
        with self._lock:
            return TrackerStatus(
                current_track=self.current_track,
                last_scrobbled=self.last_scrobbled,
                error_message=self.error_message,
                source_name=getattr(self._source, "name", type(self._source).__name__),
                is_tracking=self._session is not None,
            )

    # -------- lifecycle --------
    def start(self) -> None:
        if self._poll_thread is not None:
            return
        if self._owns_executor and self._executor_closed:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="scrobble-io")
            self._executor_closed = False
        self._stopped.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, name="poll", daemon=True)
        self._poll_thread.start()
        log.info("Tracking %s, poll interval %ss", self.status().source_name, self.poll_interval)

    def _poll_loop(self) -> None:
        while not self._stopped.is_set():
            self.on_poll_tick()
            self._stopped.wait(self.poll_interval)

    def stop(self) -> None:
        self._stopped.set()
        with self._lock:
            # the scrobble timer dies with the session; a later start() begins afresh
            self._clear()
            self._cancel_followups()
        thread, self._poll_thread = self._poll_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.poll_interval)
        if self._owns_executor and not self._executor_closed:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor_closed = True

    # -------- evaluation --------
    def on_poll_tick(self) -> None:
        self.evaluate()

    def on_external_change_signal(self) -> None:
        # Push notification: evaluate now, the poll schedule stays as it is
        self.evaluate()

    def evaluate(self) -> None:
        if self._stopped.is_set():
            return
        with self._lock:
            source = self._source
            self._fetch_seq += 1
            seq = self._fetch_seq
        try:
            snapshot = source.fetch_current_track_info()
        except Exception as e:
            log.warning("Now-playing fetch failed: %s", e)
            return
        if snapshot is None:
            log.debug("No status from %s; keeping current state", getattr(source, "name", source))
            return

        log.debug("Parsed: playing=%s artist=%s title=%s album=%s duration=%s",
                  snapshot.is_playing, snapshot.artist, snapshot.title, snapshot.album, snapshot.duration)

        with self._lock:
            if source is not self._source:
                return  # answer from a source we already switched away from
            if seq < self._applied_seq:
                log.debug("Dropping fetch %s; a newer one was already applied", seq)
                return
            self._applied_seq = seq
            if not snapshot.is_complete:
                cleared = self._clear()
                event = TrackCleared() if cleared else None
            elif self._session is not None and snapshot.same_track(self._session.track):
                log.debug("Track hasn't changed")
                return
            else:
                session, delay = self._start_session(snapshot)
                event = TrackChanged(snapshot, session.session_id, delay)
        if event is not None:
            self.bus.publish(event)

    def _start_session(self, snapshot: PlaybackSnapshot) -> tuple[PlaySession, float | None]:
        self._cancel_timer()
        delay = scrobble_delay(snapshot.duration)
        now = self._clock()
        session = PlaySession(
            session_id=next(self._session_ids),
            track=snapshot,
            started_at=now,
            scrobble_eligible_at=now + delay if delay is not None else None,
        )
        self._session = session
        self.current_track = snapshot.display_name
        log.info("Now playing: %s%s", snapshot.display_name, f" [{snapshot.album}]" if snapshot.album else "")

        # now playing goes out first; the timer does not wait for it
        self._submit(self._send_now_playing, session)
        if delay is None:
            log.info("Track too short to scrobble (%ss)", snapshot.duration)
        else:
            log.debug("Scrobble in %.1fs", delay)
            timer = self._timer_factory(delay, self._on_scrobble_timer, args=(session.session_id,))
            timer.daemon = True
            timer.start()
            self._timer = timer
        return session, delay

    def _clear(self) -> bool:
        had_track = self._session is not None or self.current_track != NO_TRACK
        self._cancel_timer()
        self._session = None
        self.current_track = NO_TRACK
        if had_track:
            log.info("Playback stopped")
        return had_track

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_followups(self) -> None:
        for timer in self._followups:
            timer.cancel()
        self._followups = []

    def _is_current(self, session: PlaySession) -> bool:
        with self._lock:
            return self._session is not None and self._session.session_id == session.session_id

    # -------- scrobbling --------
    def _on_scrobble_timer(self, session_id: int) -> None:
        with self._lock:
            session = self._session
            if self._stopped.is_set() or session is None or session.session_id != session_id:
                log.debug("Scrobble timer for replaced session %s ignored", session_id)
                return
            self._timer = None
            if not session.mark_scrobbled():
                return
            self._submit(self._send_scrobble, session)

    def _submit(self, fn: Callable[[PlaySession], None], session: PlaySession) -> None:
        try:
            future = self._executor.submit(fn, session)
        except RuntimeError as e:  # executor already shut down
            log.debug("Dropped %s: %s", fn.__name__, e)
            return
        future.add_done_callback(_log_failure)

    def _send_now_playing(self, session: PlaySession) -> None:
        track = session.track
        outcome = self.dispatcher.dispatch(Operation.UPDATE_NOW_PLAYING, track.artist, track.title, track.album)
        if not self._is_current(session):
            log.debug("Now playing result for %s arrived after track change", track.display_name)
            return
        if outcome.failed:
            log.warning("Now playing update failed: %s", outcome.summary())
        self.bus.publish(NowPlayingDispatched(track, outcome))

    def _send_scrobble(self, session: PlaySession) -> None:
        track = session.track
        outcome = self.dispatcher.dispatch(Operation.SCROBBLE, track.artist, track.title, track.album)
        with self._lock:
            if outcome.any_succeeded:
                self.last_scrobbled = track.display_name
            self.error_message = outcome.summary()
        if outcome.any_succeeded:
            log.info("Scrobbled: %s", track.display_name)
        if outcome.failed:
            log.warning("Scrobble problems: %s", outcome.summary())
        self.bus.publish(ScrobbleCompleted(track, outcome))

    # -------- source switching --------
    def switch_source(self, source: NowPlayingSource) -> None:
        """Start over with another source: drop the session and re-evaluate a few times."""
        with self._lock:
            self._cancel_timer()
            self._cancel_followups()
            had_track = self._session is not None
            self._session = None
            self.current_track = NO_TRACK
            self._source = source
            log.info("Switched now-playing source to %s", getattr(source, "name", source))
        if had_track:
            self.bus.publish(TrackCleared())
        self.evaluate()
        with self._lock:
            if self._source is not source or self._stopped.is_set():
                return
            for delay in self._switch_followups:
                timer = self._timer_factory(delay, self.evaluate)
                timer.daemon = True
                timer.start()
                self._followups.append(timer)


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        log.error("Background dispatch failed: %s", error, exc_info=error)
