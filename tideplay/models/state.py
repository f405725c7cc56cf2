"""
Playback state shared between the engine, the controller and its listeners.
"""

from dataclasses import dataclass
from enum import Enum


class PlaybackStatus(str, Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"
    SEEKING = "seeking"


@dataclass(frozen=True)
class PlaybackState:
    """A point-in-time snapshot of the single authoritative playback state."""

    status: PlaybackStatus = PlaybackStatus.STOPPED
    position: float = 0.0
    active_track_id: str | None = None
    duration: float = 0.0

    @property
    def progress_percent(self) -> float:
        if self.duration <= 0:
            return 0.0
        return min(100.0, max(0.0, self.position / self.duration * 100.0))
