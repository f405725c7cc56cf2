"""
Immutable track descriptors built from catalog API payloads.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Track(BaseModel):
    """Metadata for one streamable track. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = "Unknown Title"
    artist: str = "Unknown Artist"
    duration: float = 0.0  # seconds
    stream_locator: str | None = None
    artwork_url: str = ""
    raw_metadata: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Track":
        """
        Builds a Track from a catalog item.

        The catalog reports durations in milliseconds and may wrap the item in
        a ``{"track": {...}}`` envelope (activity and likes collections do).
        """
        item = payload.get("track", payload) if isinstance(payload, dict) else {}
        if "id" not in item:
            raise ValueError("Catalog item has no 'id' field.")

        user = item.get("user") or {}
        return cls(
            id=str(item["id"]),
            title=item.get("title") or "Unknown Title",
            artist=user.get("username") or "Unknown Artist",
            duration=float(item.get("duration") or 0) / 1000.0,
            stream_locator=item.get("stream_url") or None,
            artwork_url=item.get("artwork_url") or "",
            raw_metadata=item,
        )

    @property
    def display_name(self) -> str:
        return f"{self.artist} - {self.title}"
