"""
The player's control loop.

A single asyncio task consumes a queue of typed events. User commands, fetch
results and progress ticks all arrive as events and are handled one at a
time, so the queue, the cache and the engine are only ever mutated from this
loop. Network downloads and the tick timer run as separate tasks and report
back by posting events.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from functools import partial
from typing import Protocol

from tideplay.core.decoder import DecodeCursor, open_cursor, probe_duration
from tideplay.core.engine import PlaybackEngine
from tideplay.core.fetcher import StreamFetcher
from tideplay.core.output import AudioOutput
from tideplay.core.queue_manager import QueueManager
from tideplay.exceptions import (
    AtQueueStart,
    CacheUnavailable,
    DecodeError,
    EmptyQueue,
    FetchError,
    InvalidIndex,
    QueueExhausted,
    ReauthRequired,
    StreamErrorKind,
)
from tideplay.models import events
from tideplay.models.config import PlayerConfig
from tideplay.models.state import PlaybackState, PlaybackStatus
from tideplay.models.track import Track
from tideplay.storage.cache import CachedStream, StreamCache
from tideplay.storage.track_store import TrackStore

log = logging.getLogger(__name__)

Listener = Callable[[events.Notification], None]


class MediaControls(Protocol):
    """OS media integration: receives state snapshots, sends TransportCommands."""

    def update(self, state: PlaybackState, track: Track | None) -> None: ...


class Player:
    """Coordinates the queue, the stream cache, the fetcher and the engine."""

    def __init__(
        self,
        config: PlayerConfig,
        fetcher: StreamFetcher,
        output: AudioOutput,
        cursor_factory: Callable[[bytes], DecodeCursor] = open_cursor,
        store: TrackStore | None = None,
        media_controls: MediaControls | None = None,
    ):
        self.config = config
        self.fetcher = fetcher
        self.tracks = store or TrackStore()
        self.queue = QueueManager(self.tracks)
        self.cache = StreamCache(config.cache_capacity, distance=self.queue.distance)
        self.engine = PlaybackEngine(
            output,
            self.cache,
            cursor_factory=cursor_factory,
            end_of_track_margin=config.end_of_track_margin,
            on_state_change=self._on_status_change,
        )
        self.media_controls = media_controls

        self._events: asyncio.Queue[events.Event] = asyncio.Queue()
        self._pending: dict[str, asyncio.Task] = {}
        self._failed: dict[str, Exception] = {}
        # Set while a Previous command is skipping backward past unplayable tracks.
        self._retreat_origin: str | None = None
        self._listeners: list[Listener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass  # bound when run() starts
        self._tick_task: asyncio.Task | None = None
        self._tick_queued = False
        self._last_progress: tuple[float, float] | None = None

        self._handlers: dict[type, Callable] = {
            events.StartQueue: self._handle_start_queue,
            events.Next: self._handle_next,
            events.Previous: self._handle_previous,
            events.Play: lambda _e: self.engine.play(),
            events.Pause: lambda _e: self.engine.pause(),
            events.Toggle: lambda _e: self.engine.toggle(),
            events.Stop: lambda _e: self.engine.stop(),
            events.Seek: lambda e: self._seek(self.engine.seek, e.position),
            events.SeekBy: lambda e: self._seek(self.engine.seek_by, e.delta),
            events.SeekFraction: lambda e: self._seek(
                self.engine.seek_to_fraction, e.fraction
            ),
            events.Transport: self._handle_transport,
            events.FetchCompleted: self._handle_fetch_completed,
            events.FetchFailed: self._handle_fetch_failed,
            events.Tick: self._handle_tick,
        }

    # --- Public API ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers a UI listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def post(self, event: events.Event) -> None:
        if isinstance(event, events.Tick):
            if self._tick_queued:
                return
            self._tick_queued = True
        self._events.put_nowait(event)

    def post_threadsafe(self, event: events.Event) -> None:
        """Posts from a foreign thread, e.g. an OS media-control callback."""
        if self._loop is None:
            raise RuntimeError("The player loop is not running.")
        self._loop.call_soon_threadsafe(self.post, event)

    def start_queue(self, tracks: Sequence[Track], start_index: int = 0) -> None:
        """Validates and posts a StartQueue command."""
        if not tracks:
            raise EmptyQueue("Cannot start an empty queue.")
        if not 0 <= start_index < len(tracks):
            raise InvalidIndex(
                f"Start index {start_index} is outside the queue (0..{len(tracks) - 1})."
            )
        self.post(events.StartQueue(tuple(tracks), start_index))

    def shutdown(self) -> None:
        self.post(events.Shutdown())

    @property
    def state(self) -> PlaybackState:
        return self.engine.state

    @property
    def current_track(self) -> Track | None:
        track_id = self.engine.active_track_id
        return self.tracks.get(track_id) if track_id else None

    async def run(self) -> None:
        """Processes events until shutdown() is called."""
        self._loop = asyncio.get_running_loop()
        self._tick_task = asyncio.create_task(self._tick_loop(), name="progress-tick")
        try:
            while True:
                event = await self._events.get()
                if isinstance(event, events.Shutdown):
                    break
                self.handle(event)
        finally:
            await self._stop_ticks()

    async def run_until_idle(self, wait_for_fetches: bool = True) -> None:
        """
        Handles events until none are queued and, with ``wait_for_fetches``,
        no fetch is in flight. Does not start the progress tick.
        """
        self._loop = asyncio.get_running_loop()
        while True:
            while not self._events.empty():
                event = self._events.get_nowait()
                if not isinstance(event, events.Shutdown):
                    self.handle(event)
            running = [t for t in self._pending.values() if not t.done()]
            if not wait_for_fetches:
                running = []
            if not running:
                # Let completion callbacks of just-finished fetches post.
                await asyncio.sleep(0)
                if self._events.empty():
                    return
                continue
            await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            await asyncio.sleep(0)

    async def close(self) -> None:
        await self._stop_ticks()
        await self.fetcher.close()
        self.engine.close()

    def handle(self, event: events.Event) -> None:
        """Handles one event. Must only be called from the control loop."""
        handler = self._handlers.get(type(event))
        if handler is None:
            log.warning(f"No handler for event {type(event).__name__}")
            return
        handler(event)

    # --- Notifications ---

    def _notify(self, notification: events.Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                log.error(
                    f"Listener failed on {type(notification).__name__}", exc_info=True
                )

    def _publish_state(self) -> None:
        if self.media_controls is not None:
            try:
                self.media_controls.update(self.engine.state, self.current_track)
            except Exception:
                log.error("Media controls update failed", exc_info=True)

    def _on_status_change(self, status: PlaybackStatus) -> None:
        self._notify(events.PlaybackStateChanged(status))
        self._publish_state()

    # --- Navigation ---

    def _handle_start_queue(self, event: events.StartQueue) -> None:
        self._failed.clear()
        try:
            track = self.queue.start_queue(event.tracks, event.start_index)
        except (InvalidIndex, EmptyQueue) as e:
            log.error(f"[red]Cannot start queue: {e}[/red]")
            return
        self._track_changed(track, autoplay=self.config.auto_play)

    def _handle_next(self, _event: events.Event) -> None:
        self._advance(autoplay=self._wants_playback())

    def _handle_previous(self, _event: events.Event) -> None:
        origin = self.engine.active_track_id
        try:
            track = self.queue.previous()
        except AtQueueStart:
            self._notify(events.AtQueueStart())
            return
        except EmptyQueue:
            log.debug("Previous requested on an empty queue.")
            return
        self._track_changed(track, autoplay=self._wants_playback(), origin=origin)

    def _advance(self, autoplay: bool) -> None:
        """Moves to the next track, stopping playback at the end of the queue."""
        try:
            track = self.queue.next()
        except QueueExhausted:
            log.info("Reached the end of the queue.")
            self.engine.stop()
            self._notify(events.QueueExhausted())
            return
        except EmptyQueue:
            log.debug("Next requested on an empty queue.")
            return
        self._track_changed(track, autoplay=autoplay)

    def _wants_playback(self) -> bool:
        return (
            self.config.auto_play
            or self.engine.status == PlaybackStatus.PLAYING
            or self.engine.pending_intent == PlaybackStatus.PLAYING
        )

    def _track_changed(
        self, track: Track, autoplay: bool, origin: str | None = None
    ) -> None:
        """
        Makes ``track`` the active one. ``origin`` is the track a Previous
        command started from; it is None for forward moves.
        """
        log.info(f"Now playing: [bold]{track.display_name}[/bold]")
        self._retreat_origin = origin
        self._cancel_unwanted()
        self.engine.unload(track.id, track.duration, autoplay=autoplay)
        self._last_progress = None
        self._notify(events.TrackChanged(track))
        self._publish_state()

        error = self._failed.get(track.id)
        if error is not None:
            # Known bad track: report again and move past it.
            self._notify(events.StreamError(track.id, _error_kind(error), str(error)))
            self._skip_unavailable(autoplay)
            return

        self._prefetch()

    def _skip_unavailable(self, autoplay: bool) -> None:
        """Moves past the unplayable active track in the direction of travel."""
        origin = self._retreat_origin
        if origin is None:
            self._advance(autoplay=autoplay)
            return
        try:
            track = self.queue.previous()
        except AtQueueStart:
            # Every track between the start and the origin is unplayable.
            log.info("No playable track before the one Previous started from.")
            self._retreat_origin = None
            self.engine.stop()
            self._notify(events.AtQueueStart())
            return
        self._track_changed(track, autoplay=autoplay, origin=origin)

    # --- Fetching ---

    def _cancel_unwanted(self) -> None:
        wanted = self.queue.wanted_track_ids()
        for track_id in list(self._pending):
            if track_id not in wanted:
                self.fetcher.cancel(track_id)
                del self._pending[track_id]

    def _prefetch(self) -> None:
        """Requests the current and look-ahead tracks, loading the current one if cached."""
        current = self.queue.current_track()
        lookahead = self.queue.lookahead_track()
        for track in (current, lookahead):
            if track is None or track.id in self._failed:
                continue
            if not self.cache.contains(track.id):
                self._request(track)

        if not self.engine.has_stream:
            stream = self.cache.get(current.id)
            if stream is not None:
                self._load_active(stream)

    def _request(self, track: Track) -> None:
        if track.id in self._pending:
            return
        task = self.fetcher.fetch(track.id, track.stream_locator)
        self._pending[track.id] = task
        task.add_done_callback(partial(self._on_fetch_done, track.id))

    def _on_fetch_done(self, track_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            self.post(events.FetchCompleted(track_id, task.result()))
        else:
            self.post(events.FetchFailed(track_id, error))

    def _forget_finished(self, track_id: str) -> None:
        task = self._pending.get(track_id)
        if task is not None and task.done():
            del self._pending[track_id]

    def _handle_fetch_completed(self, event: events.FetchCompleted) -> None:
        self._forget_finished(event.track_id)
        # Checked at write time: the queue may have moved since the request.
        if event.track_id not in self.queue.wanted_track_ids():
            log.debug(f"Discarding stale download for track {event.track_id}.")
            return

        track = self.tracks.get(event.track_id)
        duration = None
        if track is None or track.duration <= 0:
            duration = probe_duration(event.data)
        stream = self.cache.put(event.track_id, event.data, duration=duration)
        self._failed.pop(event.track_id, None)
        self._notify(events.StreamReady(event.track_id))

        if event.track_id == self.engine.active_track_id and not self.engine.has_stream:
            self._load_active(stream)

    def _load_active(self, stream: CachedStream) -> None:
        try:
            self.engine.load(stream)
        except DecodeError as e:
            log.error(f"[red]Cannot decode track {stream.track_id}: {e}[/red]")
            self.cache.invalidate(stream.track_id)
            self._failed[stream.track_id] = e
            self._notify(events.StreamError(stream.track_id, StreamErrorKind.DECODE, str(e)))
            self._skip_unavailable(self._wants_playback())

    def _handle_fetch_failed(self, event: events.FetchFailed) -> None:
        self._forget_finished(event.track_id)
        error = event.error

        if isinstance(error, ReauthRequired):
            log.error(f"[red]Re-authentication required: {error}[/red]")
            self._notify(
                events.StreamError(
                    event.track_id, StreamErrorKind.REAUTH_REQUIRED, str(error)
                )
            )
            self._notify(events.ReauthRequired(str(error)))
            if event.track_id == self.engine.active_track_id:
                self.engine.stop()
            return

        if not isinstance(error, FetchError):
            log.error(
                f"[red]Unexpected error fetching track {event.track_id}: {error}[/red]",
                exc_info=error,
            )

        if event.track_id not in self.queue.wanted_track_ids():
            log.debug(f"Ignoring failure for track {event.track_id}; no longer needed.")
            return

        log.warning(f"[yellow]Track {event.track_id} is unavailable: {error}[/yellow]")
        self._failed[event.track_id] = error
        self._notify(events.StreamError(event.track_id, _error_kind(error), str(error)))

        if event.track_id == self.engine.active_track_id:
            self._skip_unavailable(self._wants_playback())

    # --- Playback ---

    def _seek(self, operation: Callable[[float], float], value: float) -> None:
        try:
            operation(value)
        except (CacheUnavailable, DecodeError) as e:
            log.warning(f"[yellow]Seek failed: {e}[/yellow]")
            self._notify(events.SeekFailed(str(e)))
            return
        self._emit_progress()
        self._publish_state()

    def _handle_transport(self, event: events.Transport) -> None:
        command = {
            events.TransportCommand.PLAY: events.Play,
            events.TransportCommand.PAUSE: events.Pause,
            events.TransportCommand.TOGGLE: events.Toggle,
            events.TransportCommand.NEXT: events.Next,
            events.TransportCommand.PREVIOUS: events.Previous,
            events.TransportCommand.STOP: events.Stop,
        }[event.command]
        self.handle(command())

    def _handle_tick(self, _event: events.Tick) -> None:
        self._tick_queued = False
        if self.engine.active_track_id is None:
            return
        if self.engine.has_track_ended():
            log.debug(f"Track {self.engine.active_track_id} finished.")
            self._advance(autoplay=True)
            return
        self._emit_progress()

    def _emit_progress(self) -> None:
        sample = self.engine.sample()
        if sample == self._last_progress:
            return
        self._last_progress = sample
        self._notify(events.PlaybackProgress(*sample))

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.tick_interval)
            self.post(events.Tick())

    async def _stop_ticks(self) -> None:
        if self._tick_task and not self._tick_task.done():
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
        self._tick_task = None


def _error_kind(error: Exception) -> StreamErrorKind:
    if isinstance(error, FetchError):
        return error.kind
    if isinstance(error, DecodeError):
        return StreamErrorKind.DECODE
    return StreamErrorKind.NETWORK
