"""
The live audio sink. It pulls PCM from whichever decode cursor is attached.
"""

import logging
import threading
from typing import Protocol

import numpy as np

from tideplay.core.decoder import CHANNELS, SAMPLE_RATE, DecodeCursor
from tideplay.exceptions import AudioOutputError

try:
    import sounddevice as sd
except (ImportError, OSError):  # PortAudio missing
    sd = None

log = logging.getLogger(__name__)


class AudioOutput(Protocol):
    @property
    def is_paused(self) -> bool: ...

    @property
    def position(self) -> float: ...

    def attach(self, cursor: DecodeCursor) -> DecodeCursor | None: ...

    def detach(self) -> DecodeCursor | None: ...

    def resume(self) -> None: ...

    def pause(self) -> None: ...

    def try_seek(self, target: float) -> bool: ...

    def set_volume(self, volume: float) -> None: ...

    def close(self) -> None: ...


class SoundDeviceOutput:
    """
    A PortAudio output stream fed from the attached cursor.

    The stream runs for the lifetime of the player; attaching a new cursor
    replaces the source without reopening the device. The callback runs on
    PortAudio's thread, so cursor access is guarded by a lock.
    """

    BLOCK_SIZE = 2048

    def __init__(self, volume: float = 0.8, device: int | str | None = None):
        if sd is None:
            raise AudioOutputError(
                "sounddevice/PortAudio is not available; cannot open audio output."
            )
        self._lock = threading.Lock()
        self._cursor: DecodeCursor | None = None
        self._paused = True
        self._volume = float(volume)
        try:
            self._stream = sd.OutputStream(
                samplerate=SAMPLE_RATE,
                channels=CHANNELS,
                dtype="float32",
                blocksize=self.BLOCK_SIZE,
                device=device,
                callback=self._callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            raise AudioOutputError(f"Failed to open audio output: {e}") from e

    def _callback(self, outdata: np.ndarray, frames: int, time_info, status) -> None:
        if status:
            log.debug(f"Audio callback status: {status}")
        with self._lock:
            if self._cursor is None or self._paused:
                outdata.fill(0)
                return
            chunk = self._cursor.read(frames)
            n = len(chunk)
            outdata[:n] = chunk * self._volume
            outdata[n:] = 0

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def position(self) -> float:
        with self._lock:
            return self._cursor.position if self._cursor else 0.0

    def attach(self, cursor: DecodeCursor) -> DecodeCursor | None:
        """Swaps in a new source and returns the previous one (not closed)."""
        with self._lock:
            previous, self._cursor = self._cursor, cursor
        return previous

    def detach(self) -> DecodeCursor | None:
        with self._lock:
            previous, self._cursor = self._cursor, None
            self._paused = True
        return previous

    def resume(self) -> None:
        with self._lock:
            self._paused = False

    def pause(self) -> None:
        with self._lock:
            self._paused = True

    def try_seek(self, target: float) -> bool:
        """
        Forward-only positioning of the live cursor.

        The cursor is taken out of the stream while it decodes up to
        ``target``, so the callback plays silence instead of waiting on the
        lock.
        """
        with self._lock:
            cursor = self._cursor
            if cursor is None or target < cursor.position:
                return False
            self._cursor = None
        try:
            cursor.advance_to(target)
        finally:
            with self._lock:
                if self._cursor is None:
                    self._cursor = cursor
        return True

    def set_volume(self, volume: float) -> None:
        self._volume = min(1.0, max(0.0, float(volume)))

    def close(self) -> None:
        cursor = self.detach()
        if cursor is not None:
            cursor.close()
        if not self._stream.closed:
            self._stream.stop()
            self._stream.close()
