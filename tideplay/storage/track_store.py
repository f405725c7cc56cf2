"""
In-memory registry of track descriptors, keyed by track id.
"""

from collections.abc import Iterable, Iterator

from tideplay.models.track import Track


class TrackStore:
    """Owns every Track the player knows about; other components keep ids only."""

    def __init__(self, tracks: Iterable[Track] = ()):
        self._tracks: dict[str, Track] = {}
        self.add_all(tracks)

    def add(self, track: Track) -> Track:
        """Registers a track; an existing descriptor with the same id wins."""
        return self._tracks.setdefault(track.id, track)

    def add_all(self, tracks: Iterable[Track]) -> None:
        for track in tracks:
            self.add(track)

    def get(self, track_id: str) -> Track | None:
        return self._tracks.get(track_id)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._tracks

    def __len__(self) -> int:
        return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(self._tracks.values())
