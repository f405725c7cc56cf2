"""Tests for the stream cache"""

from tideplay.core.queue_manager import QueueManager
from tideplay.models.track import Track
from tideplay.storage.cache import StreamCache
from tideplay.storage.track_store import TrackStore


def _queue_of(n):
    tracks = [Track(id=f"t{i}", duration=60.0) for i in range(n)]
    queue = QueueManager(TrackStore())
    queue.start_queue(tracks, 0)
    return queue


class TestCacheBasics:
    def test_put_and_get(self):
        cache = StreamCache(capacity=2)
        entry = cache.put("A", b"abc", duration=3.0)
        assert cache.get("A") is entry
        assert entry.size == 3
        assert "A" in cache
        assert cache.get("missing") is None

    def test_put_replaces_existing_entry(self):
        cache = StreamCache(capacity=2)
        cache.put("A", b"old")
        cache.put("A", b"new")
        assert len(cache) == 1
        assert cache.get("A").data == b"new"

    def test_stats_callback_reports_hits_and_misses(self):
        seen = []
        cache = StreamCache(capacity=2, stats_callback=seen.append)
        cache.put("A", b"x")
        cache.get("A")
        cache.get("B")
        assert seen == [True, False]

    def test_invalidate(self):
        cache = StreamCache(capacity=2)
        cache.put("A", b"x")
        assert cache.invalidate("A")
        assert not cache.invalidate("A")
        assert len(cache) == 0


class TestEviction:
    def test_never_exceeds_capacity(self):
        cache = StreamCache(capacity=2)
        for tid in "ABCDE":
            cache.put(tid, b"x")
            assert len(cache) <= 2

    def test_lru_without_queue(self):
        cache = StreamCache(capacity=2)
        cache.put("A", b"x")
        cache.put("B", b"x")
        cache.get("A")
        cache.put("C", b"x")
        assert set(cache.track_ids()) == {"A", "C"}

    def test_pinned_track_survives(self):
        cache = StreamCache(capacity=2)
        cache.put("A", b"x")
        cache.pin("A")
        for tid in "BCDE":
            cache.put(tid, b"x")
        assert "A" in cache

    def test_farthest_from_queue_position_goes_first(self):
        queue = _queue_of(6)
        cache = StreamCache(capacity=3, distance=queue.distance)
        for _ in range(3):
            queue.next()
        cache.pin("t3")
        cache.put("t3", b"x")
        cache.put("t0", b"x")
        cache.put("t4", b"x")
        cache.put("t2", b"x")
        # t0 is three tracks away; t2 and t4 are neighbours.
        assert set(cache.track_ids()) == {"t2", "t3", "t4"}

    def test_unqueued_entries_are_evicted_before_queued_ones(self):
        queue = _queue_of(3)
        cache = StreamCache(capacity=2, distance=queue.distance)
        cache.put("stray", b"x")
        cache.put("t1", b"x")
        cache.put("t0", b"x")
        assert "stray" not in cache
        assert cache.total_bytes == 2
