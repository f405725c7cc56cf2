"""
Owns the live audio sink and the playback state machine.

State transitions::

    Stopped -> Playing <-> Paused
    Playing/Paused -> Seeking -> (previous status)
    Playing -> Stopped   (queue exhausted, fatal error, stop())

Backward seeks rebuild the decode cursor from the cached bytes of the
active track, because a cursor can only move forward.
"""

import logging
from collections.abc import Callable

from tideplay.core.decoder import DecodeCursor, open_cursor
from tideplay.core.output import AudioOutput
from tideplay.exceptions import CacheUnavailable
from tideplay.models.state import PlaybackState, PlaybackStatus
from tideplay.storage.cache import CachedStream, StreamCache

log = logging.getLogger(__name__)


class PlaybackEngine:
    """
    Playback of the active track from the stream cache.

    The engine is driven exclusively from the player's control loop; it never
    awaits and never touches the network.
    """

    def __init__(
        self,
        output: AudioOutput,
        cache: StreamCache,
        cursor_factory: Callable[[bytes], DecodeCursor] = open_cursor,
        end_of_track_margin: float = 0.5,
        on_state_change: Callable[[PlaybackStatus], None] | None = None,
    ):
        self._output = output
        self._cache = cache
        self._cursor_factory = cursor_factory
        self.end_of_track_margin = end_of_track_margin
        self._on_state_change = on_state_change

        self._status = PlaybackStatus.STOPPED
        self._active_track_id: str | None = None
        self._duration = 0.0
        self._cursor: DecodeCursor | None = None
        self.pending_intent: PlaybackStatus | None = None
        self.last_seek_reconstructed = False

    # --- State ---

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def active_track_id(self) -> str | None:
        return self._active_track_id

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def has_stream(self) -> bool:
        """True once the active track's bytes are loaded into a cursor."""
        return self._cursor is not None

    @property
    def position(self) -> float:
        return self._output.position if self._cursor is not None else 0.0

    @property
    def state(self) -> PlaybackState:
        return PlaybackState(
            status=self._status,
            position=self.position,
            active_track_id=self._active_track_id,
            duration=self._duration,
        )

    def sample(self) -> tuple[float, float]:
        """Position and duration, as reported by the progress tick."""
        return self.position, self._duration

    def _set_status(self, status: PlaybackStatus) -> None:
        if status == self._status:
            return
        log.debug(f"Playback status {self._status.value} -> {status.value}")
        self._status = status
        if self._on_state_change:
            self._on_state_change(status)

    # --- Track lifecycle ---

    def _discard_cursor(self) -> None:
        previous = self._output.detach()
        if previous is not None:
            previous.close()
        if self._cursor is not None and self._cursor is not previous:
            self._cursor.close()
        self._cursor = None

    def unload(self, track_id: str | None, duration: float = 0.0, autoplay: bool = True):
        """
        Tears down the current source and makes ``track_id`` the active track.

        With ``autoplay`` the new track starts as soon as its bytes are
        loaded; otherwise the engine stops.
        """
        self._discard_cursor()
        self._active_track_id = track_id
        self._duration = duration
        self._cache.pin(track_id)
        self.last_seek_reconstructed = False
        if autoplay and track_id is not None:
            self.pending_intent = PlaybackStatus.PLAYING
        else:
            self.pending_intent = None
            self._set_status(PlaybackStatus.STOPPED)

    def load(self, stream: CachedStream) -> None:
        """
        Builds a fresh cursor for the active track and applies any queued
        play/pause request.

        Raises:
            DecodeError: The cached bytes cannot be decoded.
        """
        if stream.track_id != self._active_track_id:
            raise ValueError(
                f"Stream {stream.track_id} is not the active track "
                f"({self._active_track_id})."
            )
        cursor = self._cursor_factory(stream.data)
        self._discard_cursor()
        self._cursor = cursor
        self._output.attach(cursor)
        if self._duration <= 0 and stream.duration:
            self._duration = stream.duration

        intent, self.pending_intent = self.pending_intent, None
        if intent == PlaybackStatus.PLAYING:
            self._output.resume()
            self._set_status(PlaybackStatus.PLAYING)
        elif intent == PlaybackStatus.PAUSED:
            self._output.pause()
            self._set_status(PlaybackStatus.PAUSED)
        else:
            self._output.pause()

    def _ensure_cursor(self) -> bool:
        """Loads the active track from the cache if no cursor exists yet."""
        if self._cursor is not None:
            return True
        if self._active_track_id is None:
            return False
        stream = self._cache.get(self._active_track_id)
        if stream is None:
            return False
        self.load(stream)
        return True

    # --- Transport ---

    def play(self) -> bool:
        """
        Starts or resumes playback. Without cached bytes the request is queued
        and applied when the stream arrives; returns False in that case.
        """
        if self._active_track_id is None:
            return False
        if not self._ensure_cursor():
            self.pending_intent = PlaybackStatus.PLAYING
            return False
        self.pending_intent = None
        self._output.resume()
        self._set_status(PlaybackStatus.PLAYING)
        return True

    def pause(self) -> bool:
        if self._active_track_id is None:
            return False
        if self._cursor is None:
            self.pending_intent = PlaybackStatus.PAUSED
            return False
        if self._status == PlaybackStatus.STOPPED:
            return False
        self._output.pause()
        self._set_status(PlaybackStatus.PAUSED)
        return True

    def toggle(self) -> bool:
        if self._cursor is None:
            playing = self.pending_intent == PlaybackStatus.PLAYING
        else:
            playing = self._status == PlaybackStatus.PLAYING
        return self.pause() if playing else self.play()

    def stop(self) -> None:
        """Stops playback; the next play() restarts the track from the cache."""
        self._discard_cursor()
        self.pending_intent = None
        self._set_status(PlaybackStatus.STOPPED)

    # --- Seeking ---

    def _clamp(self, target: float) -> float:
        target = max(0.0, float(target))
        if self._duration > 0:
            target = min(target, self._duration)
        return target

    def seek(self, target: float) -> float:
        """
        Moves playback to ``target`` seconds and returns the new position.

        Forward targets are applied to the live cursor. Backward targets
        rebuild the cursor from the cached buffer and advance it. On failure
        the position and status are left exactly as they were.

        Raises:
            CacheUnavailable: No cached bytes exist for the active track.
            DecodeError: The cached bytes could not be decoded.
        """
        if self._active_track_id is None:
            raise CacheUnavailable("No active track to seek in.")
        target = self._clamp(target)

        if self._cursor is None:
            stream = self._cache.get(self._active_track_id)
            if stream is None:
                raise CacheUnavailable(
                    f"Track {self._active_track_id} is not cached yet."
                )
            self.load(stream)
            self._output.try_seek(target)
            self.last_seek_reconstructed = False
            return self.position

        current = self.position
        prior = self._status
        if target >= current:
            self._set_status(PlaybackStatus.SEEKING)
            try:
                moved = self._output.try_seek(target)
            finally:
                self._set_status(prior)
            if moved:
                self.last_seek_reconstructed = False
                return self.position
            # The sink played past the target in the meantime.

        stream = self._cache.get(self._active_track_id)
        if stream is None:
            raise CacheUnavailable(
                f"Cannot seek backward: track {self._active_track_id} is not cached."
            )
        cursor = self._cursor_factory(stream.data)
        cursor.advance_to(target)

        self._set_status(PlaybackStatus.SEEKING)
        previous = self._output.attach(cursor)
        self._cursor = cursor
        if previous is not None:
            previous.close()
        self.last_seek_reconstructed = True
        log.debug(
            f"Rebuilt decode cursor for track {self._active_track_id} "
            f"({current:.2f}s -> {target:.2f}s)"
        )
        self._set_status(prior)
        return self.position

    def seek_by(self, delta: float) -> float:
        return self.seek(self.position + delta)

    def seek_to_fraction(self, fraction: float) -> float:
        if self._duration <= 0:
            raise CacheUnavailable("Track duration is unknown; cannot seek by fraction.")
        return self.seek(min(1.0, max(0.0, fraction)) * self._duration)

    def has_track_ended(self) -> bool:
        if self._cursor is None or self._status != PlaybackStatus.PLAYING:
            return False
        if self._cursor.exhausted:
            return True
        return self._duration > 0 and self.position >= max(
            0.0, self._duration - self.end_of_track_margin
        )

    def close(self) -> None:
        self._discard_cursor()
        self._output.close()
