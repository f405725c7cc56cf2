"""Tests for the sounddevice output stream, with PortAudio replaced by a stand-in"""

import types

import numpy as np
import pytest

from conftest import FakeCursor
from tideplay.core import output as output_module
from tideplay.core.output import SoundDeviceOutput


class StubStream:
    def __init__(self, **kwargs):
        self.callback = kwargs["callback"]
        self.closed = False

    def start(self):
        pass

    def stop(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def device_output(monkeypatch):
    fake_sd = types.SimpleNamespace(OutputStream=StubStream, PortAudioError=OSError)
    monkeypatch.setattr(output_module, "sd", fake_sd)
    out = SoundDeviceOutput(volume=1.0)
    yield out
    out.close()


class SlowCursor(FakeCursor):
    """Runs one audio callback from inside advance_to, as PortAudio would mid-seek."""

    def __init__(self, duration, output):
        super().__init__(duration)
        self.output = output
        self.callback_block = None
        self.lock_was_held = None

    def advance_to(self, target):
        self.lock_was_held = self.output._lock.locked()
        block = np.ones((256, 2), dtype=np.float32)
        self.output._callback(block, 256, None, None)
        self.callback_block = block
        super().advance_to(target)


class TestSoundDeviceOutput:
    def test_forward_seek_does_not_hold_the_callback_lock(self, device_output):
        cursor = SlowCursor(120.0, device_output)
        device_output.attach(cursor)
        device_output.resume()

        assert device_output.try_seek(60.0)
        assert cursor.lock_was_held is False
        assert not cursor.callback_block.any()
        assert device_output.position == pytest.approx(60.0)
        assert device_output.detach() is cursor

    def test_backward_seek_is_refused(self, device_output):
        cursor = FakeCursor(120.0)
        cursor.advance_to(30.0)
        device_output.attach(cursor)
        assert not device_output.try_seek(10.0)
        assert device_output.position == pytest.approx(30.0)

    def test_callback_reads_from_attached_cursor(self, device_output):
        device_output.attach(FakeCursor(1.0))
        device_output.resume()
        block = np.ones((1024, 2), dtype=np.float32)
        device_output._callback(block, 1024, None, None)
        assert device_output.position == pytest.approx(1024 / 44100)

    def test_close_is_idempotent(self, device_output):
        device_output.close()
        device_output.close()
        assert device_output._stream.closed
