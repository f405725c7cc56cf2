"""
Data Models Layer.

This package contains the core data structures used throughout the
application: configuration, track descriptors, playback state and the
typed events exchanged with the control loop.
"""

from .config import PlayerConfig
from .state import PlaybackState, PlaybackStatus
from .track import Track

__all__ = ["PlaybackState", "PlaybackStatus", "PlayerConfig", "Track"]
