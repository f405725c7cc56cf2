"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_TOKEN_URL = "https://secure.soundcloud.com/oauth/token"
DEFAULT_API_BASE_URL = "https://api.soundcloud.com"


class PlayerConfig(BaseModel):
    """A validated configuration model for the player."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Authentication & API
    client_id: str = ""
    client_secret: str = ""
    token_url: str = DEFAULT_TOKEN_URL
    api_base_url: str = DEFAULT_API_BASE_URL

    # Streaming
    cache_capacity: int = 3
    fetch_max_attempts: int = 3
    fetch_base_delay: float = 1.0
    fetch_timeout: float = 60.0
    max_connections: int = 4

    # Playback
    tick_interval: float = 0.1
    seek_step: float = 10.0
    end_of_track_margin: float = 0.5
    volume: float = 0.8
    auto_play: bool = True

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    @field_validator("cache_capacity")
    @classmethod
    def validate_cache_capacity(cls, v: int) -> int:
        """The active track and its look-ahead must always fit."""
        if v < 2 or v > 16:
            raise ValueError("Cache capacity must be between 2 and 16 tracks.")
        return v

    @field_validator("fetch_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Fetch attempts must be between 1 and 10.")
        return v

    @field_validator("fetch_base_delay", "seek_step", "end_of_track_margin")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Value cannot be negative.")
        return v

    @field_validator("fetch_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Fetch timeout must be positive.")
        return v

    @field_validator("tick_interval")
    @classmethod
    def validate_tick_interval(cls, v: float) -> float:
        """Ensures the progress tick stays responsive without busy-looping."""
        if v < 0.02 or v > 1.0:
            raise ValueError("Tick interval must be between 0.02 and 1.0 seconds.")
        return v

    @field_validator("volume")
    @classmethod
    def validate_volume(cls, v: float) -> float:
        if v < 0.0 or v > 1.0:
            raise ValueError("Volume must be between 0.0 and 1.0.")
        return v

    @field_validator("max_connections")
    @classmethod
    def validate_connections(cls, v: int) -> int:
        if v < 1 or v > 32:
            raise ValueError("Max connections must be between 1 and 32.")
        return v

    @field_validator("token_url", "api_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Expected an http(s) URL, got: {v!r}")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_client_credentials(self) -> "PlayerConfig":
        """A client secret without a client id cannot be used for token refresh."""
        if self.client_secret and not self.client_id:
            raise ValueError("'client_secret' is set but 'client_id' is missing.")
        return self

    @property
    def can_refresh_tokens(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
