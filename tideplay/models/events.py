"""
Typed messages flowing through the player's control loop.

Commands and background results are consumed by the loop; notifications are
what the loop publishes to the UI layer and other listeners.
"""

from dataclasses import dataclass, field
from enum import Enum

from tideplay.exceptions import StreamErrorKind
from tideplay.models.state import PlaybackStatus
from tideplay.models.track import Track


class TransportCommand(str, Enum):
    """Commands accepted from OS media controls, forwarded verbatim."""

    PLAY = "play"
    PAUSE = "pause"
    TOGGLE = "toggle"
    NEXT = "next"
    PREVIOUS = "previous"
    STOP = "stop"


class Event:
    """Marker base class for everything that can be posted to the loop."""


# --- Commands (user / OS media controls) ---


@dataclass(frozen=True)
class StartQueue(Event):
    tracks: tuple[Track, ...]
    start_index: int = 0


@dataclass(frozen=True)
class Next(Event):
    pass


@dataclass(frozen=True)
class Previous(Event):
    pass


@dataclass(frozen=True)
class Play(Event):
    pass


@dataclass(frozen=True)
class Pause(Event):
    pass


@dataclass(frozen=True)
class Toggle(Event):
    pass


@dataclass(frozen=True)
class Stop(Event):
    pass


@dataclass(frozen=True)
class Seek(Event):
    position: float


@dataclass(frozen=True)
class SeekBy(Event):
    delta: float


@dataclass(frozen=True)
class SeekFraction(Event):
    fraction: float


@dataclass(frozen=True)
class Transport(Event):
    command: TransportCommand


@dataclass(frozen=True)
class Shutdown(Event):
    pass


# --- Background task results ---


@dataclass(frozen=True)
class FetchCompleted(Event):
    track_id: str
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class FetchFailed(Event):
    track_id: str
    error: Exception


@dataclass(frozen=True)
class Tick(Event):
    pass


# --- Notifications (published to listeners) ---


class Notification:
    """Marker base class for events delivered to the UI layer."""


@dataclass(frozen=True)
class TrackChanged(Notification):
    track: Track


@dataclass(frozen=True)
class QueueExhausted(Notification):
    pass


@dataclass(frozen=True)
class AtQueueStart(Notification):
    pass


@dataclass(frozen=True)
class StreamReady(Notification):
    track_id: str


@dataclass(frozen=True)
class StreamError(Notification):
    track_id: str
    kind: StreamErrorKind
    message: str = ""


@dataclass(frozen=True)
class PlaybackProgress(Notification):
    position: float
    duration: float


@dataclass(frozen=True)
class PlaybackStateChanged(Notification):
    status: PlaybackStatus


@dataclass(frozen=True)
class ReauthRequired(Notification):
    message: str = ""


@dataclass(frozen=True)
class SeekFailed(Notification):
    reason: str = ""
