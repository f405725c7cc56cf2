"""
Storage Layer.

This package handles everything the player keeps around: the configuration
file, the stored OAuth token, track descriptors and the in-memory stream cache.
"""

from .cache import CachedStream, StreamCache
from .config_manager import ConfigManager
from .token_store import StoredToken, TokenStore
from .track_store import TrackStore

__all__ = [
    "CachedStream",
    "ConfigManager",
    "StoredToken",
    "StreamCache",
    "TokenStore",
    "TrackStore",
]
