"""
Playback core.

The `Player` runs the control loop and coordinates the `QueueManager`, the
`StreamFetcher` and the `PlaybackEngine`, which decodes cached bytes into an
audio output.
"""

from .engine import PlaybackEngine
from .fetcher import StreamFetcher
from .player import MediaControls, Player
from .queue_manager import QueueManager

__all__ = ["MediaControls", "PlaybackEngine", "Player", "QueueManager", "StreamFetcher"]
