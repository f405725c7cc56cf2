"""Test configuration and fixtures"""

import asyncio

import numpy as np
import pytest

from tideplay.models.config import PlayerConfig
from tideplay.models.track import Track


class FakeCursor:
    """Forward-only cursor over a track of known length; no real decoding."""

    sample_rate = 44100
    channels = 2

    def __init__(self, duration: float, data: bytes = b""):
        self.duration = duration
        self.data = data
        self._position = 0.0
        self.closed = False

    @property
    def position(self) -> float:
        return self._position

    @property
    def exhausted(self) -> bool:
        return self._position >= self.duration

    def read(self, max_frames: int) -> np.ndarray:
        frames = min(max_frames, int((self.duration - self._position) * self.sample_rate))
        frames = max(frames, 0)
        self._position += frames / self.sample_rate
        return np.zeros((frames, self.channels), dtype=np.float32)

    def advance_to(self, target: float) -> None:
        if target < self._position - 1e-6:
            raise ValueError("cursor cannot move backward")
        self._position = min(target, self.duration)

    def play_for(self, seconds: float) -> None:
        self._position = min(self._position + seconds, self.duration)

    def close(self) -> None:
        self.closed = True


class CursorFactory:
    """Builds FakeCursors from payloads of the form b'audio-<track id>'."""

    def __init__(self, durations: dict[str, float]):
        self.durations = durations
        self.created: list[FakeCursor] = []

    def __call__(self, data: bytes) -> FakeCursor:
        track_id = data.decode().split("-", 1)[1]
        cursor = FakeCursor(self.durations[track_id], data)
        self.created.append(cursor)
        return cursor


class FakeOutput:
    """Audio sink stand-in; position is whatever the attached cursor reports."""

    def __init__(self):
        self.cursor = None
        self.paused = True
        self.volume = 1.0
        self.closed = False

    @property
    def is_paused(self) -> bool:
        return self.paused

    @property
    def position(self) -> float:
        return self.cursor.position if self.cursor is not None else 0.0

    def attach(self, cursor):
        previous, self.cursor = self.cursor, cursor
        return previous

    def detach(self):
        previous, self.cursor = self.cursor, None
        return previous

    def resume(self) -> None:
        self.paused = False

    def pause(self) -> None:
        self.paused = True

    def try_seek(self, target: float) -> bool:
        if self.cursor is None or target < self.cursor.position:
            return False
        self.cursor.advance_to(target)
        return True

    def set_volume(self, volume: float) -> None:
        self.volume = volume

    def play_for(self, seconds: float) -> None:
        self.cursor.play_for(seconds)

    def close(self) -> None:
        self.closed = True


class FakeFetcher:
    """
    In-memory fetcher. Tracks listed in ``gated`` only finish once released;
    tracks in ``failures`` raise the given exception.
    """

    def __init__(self, failures=None, gated=()):
        self.failures = dict(failures or {})
        self.gated = set(gated)
        self.requests: list[str] = []
        self.cancelled: list[str] = []
        self._gates: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self.closed = False

    def fetch(self, track_id, stream_locator):
        task = self._tasks.get(track_id)
        if task is not None and not task.done():
            return task
        self.requests.append(track_id)
        task = asyncio.create_task(self._download(track_id))
        self._tasks[track_id] = task
        return task

    async def _download(self, track_id):
        if track_id in self.gated:
            await self._gates.setdefault(track_id, asyncio.Event()).wait()
        if track_id in self.failures:
            raise self.failures[track_id]
        return f"audio-{track_id}".encode()

    def release(self, track_id):
        self.gated.discard(track_id)
        self._gates.setdefault(track_id, asyncio.Event()).set()

    def in_flight(self, track_id):
        task = self._tasks.get(track_id)
        return task is not None and not task.done()

    def cancel(self, track_id):
        task = self._tasks.pop(track_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        self.cancelled.append(track_id)
        return True

    async def close(self):
        for track_id in list(self._tasks):
            self.cancel(track_id)
        self.closed = True


class FakeTokenProvider:
    def __init__(self, token="token-1", refreshed="token-2", refresh_error=None):
        self.token = token
        self.refreshed = refreshed
        self.refresh_error = refresh_error
        self.refresh_calls = 0

    async def get_valid_token(self):
        return self.token

    async def refresh(self, stale_token=None):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        self.token = self.refreshed
        return self.token


@pytest.fixture
def config():
    return PlayerConfig(cache_capacity=3, auto_play=True)


@pytest.fixture
def sample_tracks():
    """Queue used by the playback scenarios: A(180s), B(200s), C(90s)."""
    return [
        Track(id="A", title="Alpha", artist="One", duration=180.0, stream_locator="http://x/A"),
        Track(id="B", title="Bravo", artist="Two", duration=200.0, stream_locator="http://x/B"),
        Track(id="C", title="Charlie", artist="Three", duration=90.0, stream_locator="http://x/C"),
    ]


@pytest.fixture
def cursor_factory(sample_tracks):
    return CursorFactory({t.id: t.duration for t in sample_tracks})


@pytest.fixture
def fake_output():
    return FakeOutput()


@pytest.fixture
def sample_track_payload():
    """Catalog item as returned by the tracks endpoint"""
    return {
        "id": 123456,
        "title": "Test Song",
        "duration": 210000,
        "stream_url": "https://api.example.com/tracks/123456/stream",
        "artwork_url": "https://img.example.com/123456.jpg",
        "user": {"id": 42, "username": "Test Artist"},
    }


@pytest.fixture
def temp_dir(tmp_path):
    """Temporary directory for config and token files"""
    return tmp_path
