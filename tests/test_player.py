"""Tests for the control loop: navigation, prefetch, failures and seeking"""

import asyncio
import threading

import pytest

from conftest import FakeFetcher
from tideplay.core.player import Player
from tideplay.exceptions import (
    DecodeError,
    Forbidden,
    InvalidIndex,
    NotFound,
    ReauthRequired,
    StreamErrorKind,
)
from tideplay.models import events
from tideplay.models.state import PlaybackStatus


class Recorder:
    def __init__(self):
        self.notifications = []
        self.states = []

    def __call__(self, notification):
        self.notifications.append(notification)

    def update(self, state, track):
        self.states.append((state, track))

    def of_type(self, kind):
        return [n for n in self.notifications if isinstance(n, kind)]


def _player(config, fetcher, output, cursor_factory, recorder=None):
    player = Player(config, fetcher, output, cursor_factory=cursor_factory, media_controls=recorder)
    if recorder is not None:
        player.subscribe(recorder)
    return player


class TestNavigationScenario:
    def test_next_previous_then_backward_seek(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher()
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            assert player.state.status == PlaybackStatus.PLAYING
            assert player.engine.active_track_id == "A"

            fake_output.play_for(60.0)
            player.post(events.Next())
            await player.run_until_idle()
            assert player.engine.active_track_id == "B"
            assert player.state.status == PlaybackStatus.PLAYING
            assert "A" in player.cache

            player.post(events.Previous())
            await player.run_until_idle()
            assert player.engine.active_track_id == "A"
            assert player.engine.position == pytest.approx(0.0)

            fake_output.play_for(45.0)
            player.post(events.Seek(30.0))
            await player.run_until_idle()
            assert player.engine.last_seek_reconstructed
            assert player.engine.position == pytest.approx(30.0)
            assert player.state.status == PlaybackStatus.PLAYING

            changed = [n.track.id for n in recorder.of_type(events.TrackChanged)]
            assert changed == ["A", "B", "A"]
            assert sorted(fetcher.requests) == ["A", "B", "C"]
            assert recorder.states[-1][1].id == "A"
            await player.close()

        asyncio.run(scenario())

    def test_boundaries_emit_signals_without_moving(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            player = _player(config, FakeFetcher(), fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            player.post(events.Previous())
            await player.run_until_idle()
            assert recorder.of_type(events.AtQueueStart)
            assert player.queue.current_index == 0

            player.post(events.Next())
            player.post(events.Next())
            player.post(events.Next())
            await player.run_until_idle()
            assert recorder.of_type(events.QueueExhausted)
            assert player.queue.current_index == 2
            assert player.state.status == PlaybackStatus.STOPPED
            await player.close()

        asyncio.run(scenario())

    def test_start_queue_validates_index(self, config, sample_tracks, fake_output, cursor_factory):
        player = _player(config, FakeFetcher(), fake_output, cursor_factory)
        with pytest.raises(InvalidIndex):
            player.start_queue(sample_tracks, 5)


class TestEndOfTrack:
    def test_tick_past_end_margin_advances_then_exhausts(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            player = _player(config, FakeFetcher(), fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 1)
            await player.run_until_idle()

            fake_output.play_for(199.0)
            player.post(events.Tick())
            await player.run_until_idle()
            assert player.engine.active_track_id == "B"

            fake_output.play_for(0.6)
            player.post(events.Tick())
            await player.run_until_idle()
            assert player.engine.active_track_id == "C"
            assert player.engine.position == pytest.approx(0.0)
            assert player.state.status == PlaybackStatus.PLAYING

            fake_output.play_for(90.0)
            player.post(events.Tick())
            await player.run_until_idle()
            assert recorder.of_type(events.QueueExhausted)
            assert player.queue.current_index == 2
            assert player.state.status == PlaybackStatus.STOPPED
            changed = [n.track.id for n in recorder.of_type(events.TrackChanged)]
            assert changed == ["B", "C"]
            await player.close()

        asyncio.run(scenario())


class TestPrefetch:
    def test_requests_are_deduplicated_and_unwanted_ones_cancelled(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            fetcher = FakeFetcher(gated={"A", "B", "C"})
            player = _player(config, fetcher, fake_output, cursor_factory)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle(wait_for_fetches=False)
            assert fetcher.requests == ["A", "B"]

            player.post(events.Next())
            await player.run_until_idle(wait_for_fetches=False)
            assert fetcher.requests == ["A", "B", "C"]
            assert fetcher.cancelled == ["A"]

            for track_id in ("B", "C"):
                fetcher.release(track_id)
            await player.run_until_idle()
            assert player.engine.active_track_id == "B"
            assert player.state.status == PlaybackStatus.PLAYING
            assert "A" not in player.cache
            await player.close()

        asyncio.run(scenario())

    def test_stale_download_is_not_cached(self, config, sample_tracks, fake_output, cursor_factory):
        async def scenario():
            player = _player(config, FakeFetcher(), fake_output, cursor_factory)
            player.start_queue(sample_tracks, 2)
            await player.run_until_idle()
            player.handle(events.FetchCompleted("A", b"audio-A"))
            assert "A" not in player.cache
            assert "C" in player.cache
            await player.close()

        asyncio.run(scenario())

    def test_active_track_is_never_evicted(self, sample_tracks, fake_output, cursor_factory):
        from tideplay.models.config import PlayerConfig

        async def scenario():
            fetcher = FakeFetcher()
            player = _player(PlayerConfig(cache_capacity=2), fetcher, fake_output, cursor_factory)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            for command in (events.Next(), events.Previous(), events.Next(), events.Next()):
                player.post(command)
                await player.run_until_idle()
                assert player.engine.active_track_id in player.cache
                assert len(player.cache) <= 2
            await player.close()

        asyncio.run(scenario())


class TestFailures:
    def test_lookahead_not_found_is_skipped_when_reached(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher(failures={"C": NotFound("C")})
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            player.post(events.Next())
            await player.run_until_idle()

            errors = recorder.of_type(events.StreamError)
            assert [(e.track_id, e.kind) for e in errors] == [("C", StreamErrorKind.NOT_FOUND)]
            assert player.queue.current_index == 1
            assert player.engine.active_track_id == "B"

            fake_output.play_for(200.0)
            player.post(events.Tick())
            await player.run_until_idle()

            assert [n.track.id for n in recorder.of_type(events.TrackChanged)][-1] == "C"
            assert len(recorder.of_type(events.StreamError)) == 2
            assert recorder.of_type(events.QueueExhausted)
            assert player.state.status == PlaybackStatus.STOPPED
            assert fetcher.requests.count("C") == 1
            await player.close()

        asyncio.run(scenario())

    def test_previous_skips_backward_past_unavailable_track(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher(failures={"B": NotFound("B")})
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            player.post(events.Next())
            await player.run_until_idle()
            assert player.engine.active_track_id == "C"

            fake_output.play_for(40.0)
            player.post(events.Previous())
            await player.run_until_idle()

            assert player.queue.current_index == 0
            assert player.engine.active_track_id == "A"
            assert player.state.status == PlaybackStatus.PLAYING
            changed = [n.track.id for n in recorder.of_type(events.TrackChanged)]
            assert changed == ["A", "B", "C", "B", "A"]
            await player.close()

        asyncio.run(scenario())

    def test_previous_stops_at_start_when_nothing_earlier_plays(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher(failures={"A": NotFound("A")})
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            assert player.engine.active_track_id == "B"

            player.post(events.Previous())
            await player.run_until_idle()

            assert recorder.of_type(events.AtQueueStart)
            assert player.queue.current_index == 0
            assert player.state.status == PlaybackStatus.STOPPED
            changed = [n.track.id for n in recorder.of_type(events.TrackChanged)]
            assert changed == ["A", "B", "A"]
            await player.close()

        asyncio.run(scenario())

    def test_active_track_failure_advances(self, config, sample_tracks, fake_output, cursor_factory):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher(failures={"A": Forbidden("A")})
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            assert recorder.of_type(events.StreamError)[0].kind == StreamErrorKind.FORBIDDEN
            assert player.engine.active_track_id == "B"
            assert player.state.status == PlaybackStatus.PLAYING
            await player.close()

        asyncio.run(scenario())

    def test_reauth_required_stops_without_advancing(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher(failures={"A": ReauthRequired("refresh token revoked")})
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            assert recorder.of_type(events.ReauthRequired)
            kinds = {e.kind for e in recorder.of_type(events.StreamError)}
            assert StreamErrorKind.REAUTH_REQUIRED in kinds
            assert player.queue.current_index == 0
            assert player.state.status == PlaybackStatus.STOPPED
            await player.close()

        asyncio.run(scenario())

    def test_undecodable_stream_advances(self, config, sample_tracks, fake_output, cursor_factory):
        def factory(data):
            if data == b"audio-A":
                raise DecodeError("bad header")
            return cursor_factory(data)

        async def scenario():
            recorder = Recorder()
            player = _player(config, FakeFetcher(), fake_output, factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()
            assert recorder.of_type(events.StreamError)[0].kind == StreamErrorKind.DECODE
            assert "A" not in player.cache
            assert player.engine.active_track_id == "B"
            await player.close()

        asyncio.run(scenario())


class TestCommands:
    def test_seek_before_bytes_reports_failure(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            recorder = Recorder()
            fetcher = FakeFetcher(gated={"A"})
            player = _player(config, fetcher, fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle(wait_for_fetches=False)
            player.post(events.Seek(10.0))
            await player.run_until_idle(wait_for_fetches=False)
            assert recorder.of_type(events.SeekFailed)
            await player.close()

        asyncio.run(scenario())

    def test_transport_and_progress(self, config, sample_tracks, fake_output, cursor_factory):
        async def scenario():
            recorder = Recorder()
            player = _player(config, FakeFetcher(), fake_output, cursor_factory, recorder)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()

            player.post(events.Transport(events.TransportCommand.PAUSE))
            await player.run_until_idle()
            assert player.state.status == PlaybackStatus.PAUSED

            player.post(events.Tick())
            player.post(events.Tick())
            await player.run_until_idle()
            assert recorder.of_type(events.PlaybackProgress) == [
                events.PlaybackProgress(0.0, 180.0)
            ]

            player.post(events.SeekFraction(0.5))
            await player.run_until_idle()
            assert recorder.of_type(events.PlaybackProgress)[-1].position == pytest.approx(90.0)

            player.post(events.Transport(events.TransportCommand.TOGGLE))
            await player.run_until_idle()
            assert player.state.status == PlaybackStatus.PLAYING
            await player.close()

        asyncio.run(scenario())

    def test_post_threadsafe_from_another_thread(
        self, config, sample_tracks, fake_output, cursor_factory
    ):
        async def scenario():
            player = _player(config, FakeFetcher(), fake_output, cursor_factory)
            player.start_queue(sample_tracks, 0)
            await player.run_until_idle()

            thread = threading.Thread(
                target=lambda: (
                    player.post_threadsafe(events.Pause()),
                    player.post_threadsafe(events.Shutdown()),
                )
            )
            thread.start()
            await asyncio.wait_for(player.run(), timeout=2)
            thread.join()
            assert player.state.status == PlaybackStatus.PAUSED
            await player.close()

        asyncio.run(scenario())

    def test_post_threadsafe_needs_a_loop(self, config, fake_output, cursor_factory):
        player = _player(config, FakeFetcher(), fake_output, cursor_factory)
        with pytest.raises(RuntimeError):
            player.post_threadsafe(events.Pause())

    def test_run_stops_on_shutdown(self, config, sample_tracks, fake_output, cursor_factory):
        async def scenario():
            player = _player(config, FakeFetcher(), fake_output, cursor_factory)
            player.start_queue(sample_tracks, 0)
            player.shutdown()
            await asyncio.wait_for(player.run(), timeout=2)
            assert player.engine.active_track_id == "A"
            await player.close()

        asyncio.run(scenario())
