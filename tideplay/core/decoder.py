"""
Forward-only decode cursors over cached audio bytes.

A cursor is single use: it can only move forward. Moving backward means
building a new cursor from the same byte buffer and advancing it.
"""

import io
import logging
from collections.abc import Iterator
from typing import Protocol

import av
import numpy as np
from mutagen import File as MutagenFile
from mutagen import MutagenError

from tideplay.exceptions import DecodeError

log = logging.getLogger(__name__)

SAMPLE_RATE = 44100
CHANNELS = 2

# Tolerance for float comparisons of positions, in seconds.
POSITION_EPSILON = 1e-6


class DecodeCursor(Protocol):
    sample_rate: int
    channels: int

    @property
    def position(self) -> float: ...

    @property
    def exhausted(self) -> bool: ...

    def read(self, max_frames: int) -> np.ndarray: ...

    def advance_to(self, target: float) -> None: ...

    def close(self) -> None: ...


class PyAVDecodeCursor:
    """
    Decodes an in-memory audio file into float32 stereo PCM at 44.1 kHz.

    ``position`` is the amount of audio handed out through ``read`` or
    skipped by ``advance_to``, in seconds.
    """

    sample_rate = SAMPLE_RATE
    channels = CHANNELS

    def __init__(self, data: bytes):
        try:
            self._container = av.open(io.BytesIO(data), mode="r")
        except (av.error.FFmpegError, ValueError, OSError) as e:
            raise DecodeError(f"Unable to open audio data: {e}") from e

        self._stream = next(
            (s for s in self._container.streams if s.type == "audio"), None
        )
        if self._stream is None:
            self._container.close()
            raise DecodeError("No audio stream found in data.")

        self._resampler = av.AudioResampler(
            format="flt", layout="stereo", rate=self.sample_rate
        )
        self._frames: Iterator[np.ndarray] = self._iter_pcm()
        self._pending = np.zeros((0, self.channels), dtype=np.float32)
        self._frames_out = 0
        self._exhausted = False
        self._closed = False

    @property
    def duration(self) -> float | None:
        if self._container.duration is None:
            return None
        return float(self._container.duration / av.time_base)

    @property
    def position(self) -> float:
        return self._frames_out / self.sample_rate

    @property
    def exhausted(self) -> bool:
        return self._exhausted and not len(self._pending)

    def _iter_pcm(self) -> Iterator[np.ndarray]:
        try:
            for packet in self._container.demux(self._stream):
                for frame in packet.decode():
                    for out in self._resampler.resample(frame):
                        yield self._to_frames(out)
            for out in self._resampler.resample(None):
                yield self._to_frames(out)
        except av.error.FFmpegError as e:
            log.warning(f"[yellow]Decoding stopped early: {e}[/yellow]")

    def _to_frames(self, frame: av.AudioFrame) -> np.ndarray:
        # Packed float samples come back as a single interleaved row.
        return frame.to_ndarray().reshape(-1, self.channels).astype(np.float32, copy=False)

    def _fill(self, min_frames: int) -> None:
        parts = [self._pending]
        available = len(self._pending)
        while available < min_frames and not self._exhausted:
            chunk = next(self._frames, None)
            if chunk is None:
                self._exhausted = True
                break
            parts.append(chunk)
            available += len(chunk)
        if len(parts) > 1:
            self._pending = np.concatenate(parts)

    def read(self, max_frames: int) -> np.ndarray:
        """Returns up to ``max_frames`` frames; an empty array means end of stream."""
        if self._closed:
            return np.zeros((0, self.channels), dtype=np.float32)
        self._fill(max_frames)
        out, self._pending = self._pending[:max_frames], self._pending[max_frames:]
        self._frames_out += len(out)
        return out

    def advance_to(self, target: float) -> None:
        """Discards decoded audio until ``position`` reaches ``target``."""
        if target < self.position - POSITION_EPSILON:
            raise ValueError(
                f"Cannot move a decode cursor backward ({self.position:.3f}s -> {target:.3f}s)"
            )
        remaining = int(round(target * self.sample_rate)) - self._frames_out
        while remaining > 0:
            skipped = len(self.read(min(remaining, self.sample_rate)))
            if not skipped:
                break
            remaining -= skipped

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._container.close()


def open_cursor(data: bytes) -> PyAVDecodeCursor:
    """Default cursor factory used by the playback engine."""
    return PyAVDecodeCursor(data)


def probe_duration(data: bytes) -> float | None:
    """Reads the track length from the audio headers, or None if unknown."""
    try:
        audio = MutagenFile(io.BytesIO(data))
    except MutagenError as e:
        log.debug(f"Duration probe failed: {e}")
        return None
    if audio is None or audio.info is None:
        return None
    length = getattr(audio.info, "length", None)
    return float(length) if length else None
