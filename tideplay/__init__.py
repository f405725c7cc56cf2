"""
tideplay: a streaming desktop player with a queue-aware audio cache.
"""

__version__ = "0.3.0"
