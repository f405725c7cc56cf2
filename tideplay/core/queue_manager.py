"""
The ordered playback queue and the current position within it.
"""

import logging
from collections.abc import Sequence

from tideplay.exceptions import AtQueueStart, EmptyQueue, InvalidIndex, QueueExhausted
from tideplay.models.track import Track
from tideplay.storage.track_store import TrackStore

log = logging.getLogger(__name__)

# How many tracks past the current one are fetched ahead of need.
LOOKAHEAD = 1


class QueueManager:
    """
    Holds track ids in play order. Navigation never wraps around.

    Navigation methods return the new current Track or raise one of the
    queue signals (InvalidIndex, EmptyQueue, QueueExhausted, AtQueueStart);
    a signal never changes the position.
    """

    def __init__(self, store: TrackStore):
        self._store = store
        self._order: list[str] = []
        self._current: int | None = None

    @property
    def current_index(self) -> int | None:
        return self._current

    @property
    def length(self) -> int:
        return len(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def is_empty(self) -> bool:
        return not self._order

    def start_queue(self, tracks: Sequence[Track], start_index: int = 0) -> Track:
        """Replaces the queue and positions it at ``start_index``."""
        if not tracks:
            raise EmptyQueue("Cannot start an empty queue.")
        if not 0 <= start_index < len(tracks):
            raise InvalidIndex(
                f"Start index {start_index} is outside the queue (0..{len(tracks) - 1})."
            )
        self._store.add_all(tracks)
        self._order = [t.id for t in tracks]
        self._current = start_index
        log.debug(f"Queue started with {len(tracks)} tracks at index {start_index}.")
        return self.current_track()

    def start_queue_from_track(self, tracks: Sequence[Track], track_id: str) -> Track:
        for index, track in enumerate(tracks):
            if track.id == track_id:
                return self.start_queue(tracks, index)
        raise InvalidIndex(f"Track {track_id} is not in the given list.")

    def current_track(self) -> Track:
        if self._current is None or not self._order:
            raise EmptyQueue("The queue has no tracks.")
        return self._track_at(self._current)

    def _track_at(self, index: int) -> Track:
        track = self._store.get(self._order[index])
        if track is None:
            raise InvalidIndex(f"Track {self._order[index]} is missing from the store.")
        return track

    def has_next(self) -> bool:
        return self._current is not None and self._current + 1 < len(self._order)

    def has_previous(self) -> bool:
        return self._current is not None and self._current > 0

    def next(self) -> Track:
        if self._current is None:
            raise EmptyQueue("The queue has no tracks.")
        if not self.has_next():
            raise QueueExhausted("Already at the last track.")
        self._current += 1
        return self.current_track()

    def previous(self) -> Track:
        if self._current is None:
            raise EmptyQueue("The queue has no tracks.")
        if not self.has_previous():
            raise AtQueueStart("Already at the first track.")
        self._current -= 1
        return self.current_track()

    def lookahead_track(self) -> Track | None:
        if not self.has_next():
            return None
        return self._track_at(self._current + LOOKAHEAD)

    def lookahead_track_id(self) -> str | None:
        track = self.lookahead_track()
        return track.id if track else None

    def wanted_track_ids(self) -> set[str]:
        """The tracks whose bytes are needed now: current and look-ahead."""
        if self._current is None:
            return set()
        end = min(len(self._order), self._current + LOOKAHEAD + 1)
        return set(self._order[self._current:end])

    def distance(self, track_id: str) -> int | None:
        """Smallest queue distance of ``track_id`` from the current position."""
        if self._current is None:
            return None
        distances = [
            abs(index - self._current)
            for index, tid in enumerate(self._order)
            if tid == track_id
        ]
        return min(distances) if distances else None

    def tracks(self) -> list[Track]:
        return [self._track_at(i) for i in range(len(self._order))]

    def clear(self) -> None:
        self._order.clear()
        self._current = None
