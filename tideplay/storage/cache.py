"""
A bounded in-memory cache of fully downloaded audio streams.

Capacity is counted in tracks, not bytes. When full, the entry furthest from
the current queue position is evicted (least recently used first on ties).
The pinned entry, which is always the active track, is never evicted.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

# Distance used for cached tracks that are no longer in the queue.
UNQUEUED_DISTANCE = 1 << 30


@dataclass(frozen=True)
class CachedStream:
    """A complete audio download. Read-only once created."""

    track_id: str
    data: bytes = field(repr=False)
    fetched_at: float = field(default_factory=time.monotonic)
    duration: float | None = None

    @property
    def size(self) -> int:
        return len(self.data)


class StreamCache:
    """
    Keyed storage of downloaded audio with queue-distance eviction.
    """

    def __init__(
        self,
        capacity: int = 3,
        distance: Callable[[str], int | None] | None = None,
        stats_callback: Callable[[bool], None] | None = None,
    ):
        """
        Initializes the cache.

        Args:
            capacity: Maximum number of tracks held at once.
            distance: Returns the queue distance of a track id from the current
                position, or None when the track is not queued.
            stats_callback: Optional callback to report cache hits (True) or
                misses (False).
        """
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1.")
        self.capacity = capacity
        self._distance = distance or (lambda _track_id: None)
        self._stats_callback = stats_callback
        # Ordered from least to most recently used.
        self._entries: OrderedDict[str, CachedStream] = OrderedDict()
        self._pinned: str | None = None

    def set_distance_function(self, distance: Callable[[str], int | None]) -> None:
        self._distance = distance

    @property
    def pinned(self) -> str | None:
        return self._pinned

    def pin(self, track_id: str | None) -> None:
        """Marks the active track. Pinned entries survive any eviction."""
        self._pinned = track_id
        if track_id in self._entries:
            self._entries.move_to_end(track_id)

    def get(self, track_id: str) -> CachedStream | None:
        """Returns the cached stream, or None on a miss."""
        entry = self._entries.get(track_id)
        if self._stats_callback:
            self._stats_callback(entry is not None)
        if entry is not None:
            self._entries.move_to_end(track_id)
        return entry

    def contains(self, track_id: str) -> bool:
        """Membership test that does not touch recency or statistics."""
        return track_id in self._entries

    __contains__ = contains

    def put(
        self, track_id: str, data: bytes, duration: float | None = None
    ) -> CachedStream:
        """Inserts or replaces an entry, then evicts down to capacity."""
        entry = CachedStream(track_id=track_id, data=data, duration=duration)
        self._entries[track_id] = entry
        self._entries.move_to_end(track_id)
        log.debug(
            f"Cached track {track_id} ({entry.size} bytes, "
            f"{len(self._entries)}/{self.capacity} slots)."
        )
        self._evict()
        return entry

    def invalidate(self, track_id: str) -> bool:
        """Removes an entry. Returns True if something was removed."""
        removed = self._entries.pop(track_id, None) is not None
        if removed:
            log.debug(f"Invalidated cached track {track_id}.")
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def track_ids(self) -> list[str]:
        return list(self._entries)

    @property
    def total_bytes(self) -> int:
        return sum(entry.size for entry in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def _rank(self, track_id: str) -> int:
        distance = self._distance(track_id)
        return UNQUEUED_DISTANCE if distance is None else distance

    def _evict(self) -> None:
        while len(self._entries) > self.capacity:
            # Iteration order is LRU-first, so max() keeps the least recently
            # used entry among equally distant candidates.
            candidates = [tid for tid in self._entries if tid != self._pinned]
            if not candidates:
                return
            victim = max(candidates, key=self._rank)
            del self._entries[victim]
            log.debug(f"Evicted track {victim} from the stream cache.")
