"""
Defines custom exceptions for the application to allow for more specific error handling.
"""

from enum import Enum


class StreamErrorKind(str, Enum):
    """Category of a per-track stream failure, as reported to the UI."""

    NETWORK = "network"
    AUTH_EXPIRED = "auth_expired"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    DECODE = "decode"
    REAUTH_REQUIRED = "reauth_required"


class TideplayError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(TideplayError):
    """Raised for issues related to configuration loading or validation."""


# --- Queue navigation ---


class QueueError(TideplayError):
    """Base class for queue navigation signals."""


class InvalidIndex(QueueError):
    """Raised when a start index or track id is outside the queue."""


class EmptyQueue(QueueError):
    """Raised when the queue has no tracks."""


class QueueExhausted(QueueError):
    """Raised by next() when the current track is the last one."""


class AtQueueStart(QueueError):
    """Raised by previous() when the current track is the first one."""


# --- Fetching ---


class FetchError(TideplayError):
    """A stream download failed."""

    kind = StreamErrorKind.NETWORK

    def __init__(self, track_id: str, message: str = ""):
        self.track_id = track_id
        super().__init__(message or f"{self.kind.value} while fetching track {track_id}")


class NetworkError(FetchError):
    """Connection problem, timeout or retryable HTTP status (429, 5xx)."""

    kind = StreamErrorKind.NETWORK


class AuthExpired(FetchError):
    """The server rejected the access token (HTTP 401)."""

    kind = StreamErrorKind.AUTH_EXPIRED


class NotFound(FetchError):
    """The track or its stream no longer exists (HTTP 404/410)."""

    kind = StreamErrorKind.NOT_FOUND


class Forbidden(FetchError):
    """The account may not stream this track (HTTP 403)."""

    kind = StreamErrorKind.FORBIDDEN


# --- Playback ---


class CacheUnavailable(TideplayError):
    """Raised when a seek needs cached bytes that are not present."""


class DecodeError(TideplayError):
    """Raised when cached bytes cannot be decoded into audio."""


# --- Authentication ---


class AuthError(TideplayError):
    """Raised when an access token cannot be obtained."""


class ReauthRequired(AuthError):
    """The refresh token is missing or was rejected; the user must log in again."""


class AudioOutputError(TideplayError):
    """Raised when the audio output device cannot be opened."""
