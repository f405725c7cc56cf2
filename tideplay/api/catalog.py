"""
Async client for the catalog JSON API: track lookups, search, user uploads,
the activity feed, the user's likes and playlists. Produces immutable Track
descriptors for the queue.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator

import aiohttp

from tideplay.api.auth import TokenProvider
from tideplay.exceptions import AuthExpired, Forbidden, NetworkError, NotFound
from tideplay.models.config import PlayerConfig
from tideplay.models.track import Track

log = logging.getLogger(__name__)


class CatalogClient:
    """Bearer-authenticated client for the catalog endpoints the player needs."""

    PAGE_SIZE = 50

    def __init__(
        self,
        config: PlayerConfig,
        token_provider: TokenProvider,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = config.api_base_url
        self._tokens = token_provider
        self._session = session
        self._owns_session = session is None
        self._max_connections = config.max_connections

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self._max_connections * 2,
                limit_per_host=self._max_connections,
                ttl_dns_cache=300,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept": "application/json; charset=utf-8"},
                timeout=aiohttp.ClientTimeout(total=30, connect=10),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def api_call(
        self, path_or_url: str, params: dict[str, Any] | None = None
    ) -> Any:
        """
        GETs a catalog resource and returns the decoded JSON body.

        A 401 triggers a single token refresh followed by one retry.

        Raises:
            NotFound, Forbidden, NetworkError: On HTTP or transport failures.
            ReauthRequired: If the token cannot be refreshed.
        """
        url = path_or_url
        if not url.startswith(("http://", "https://")):
            url = f"{self.base_url}/{path_or_url.lstrip('/')}"

        token = await self._tokens.get_valid_token()
        try:
            return await self._get_json(url, params, token)
        except AuthExpired:
            log.debug(f"Catalog call to {url} got 401; refreshing token.")
            token = await self._tokens.refresh(token)
            return await self._get_json(url, params, token)

    async def _get_json(
        self, url: str, params: dict[str, Any] | None, token: str
    ) -> Any:
        session = await self._get_session()
        try:
            async with session.get(
                url, params=params, headers={"Authorization": f"Bearer {token}"}
            ) as r:
                if r.status == 401:
                    raise AuthExpired(url)
                if r.status == 403:
                    raise Forbidden(url)
                if r.status in (404, 410):
                    raise NotFound(url)
                if r.status >= 400:
                    body = await r.text()
                    raise NetworkError(url, f"HTTP {r.status} error: {body[:200]}")
                return await r.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(url, f"{type(e).__name__}: {e}") from e

    async def _yield_paginated(
        self, path: str, params: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Follows ``next_href`` links of a linked-partitioning collection."""
        response = await self.api_call(path, {**params, "linked_partitioning": "true"})
        while True:
            collection = response.get("collection", []) if isinstance(response, dict) else []
            for item in collection:
                yield item
            next_href = response.get("next_href") if isinstance(response, dict) else None
            if not next_href or not collection:
                break
            response = await self.api_call(next_href)

    @staticmethod
    def _to_tracks(items: list[dict[str, Any]]) -> list[Track]:
        tracks = []
        for item in items:
            try:
                tracks.append(Track.from_api(item))
            except ValueError as e:
                log.debug(f"Skipping malformed catalog item: {e}")
        return tracks

    async def _collect_tracks(
        self,
        path: str,
        params: dict[str, Any],
        limit: int,
        field: str | None = None,
    ) -> list[Track]:
        """Gathers up to ``limit`` tracks from a paginated collection.

        With ``field``, each collection item wraps its track under that key.
        """
        items = []
        async for item in self._yield_paginated(path, {**params, "limit": self.PAGE_SIZE}):
            if field is not None:
                item = item.get(field) if isinstance(item, dict) else None
                if not item:
                    continue
            items.append(item)
            if len(items) >= limit:
                break
        return self._to_tracks(items)

    # Public API Methods
    async def get_track(self, track_id: str) -> Track:
        return Track.from_api(await self.api_call(f"tracks/{track_id}"))

    async def get_liked_tracks(self, limit: int = 200) -> list[Track]:
        return await self._collect_tracks("me/likes/tracks", {"access": "playable"}, limit)

    async def search_tracks(self, query: str, limit: int = 20) -> list[Track]:
        return await self._collect_tracks(
            "tracks", {"q": query, "access": "playable"}, limit
        )

    async def get_user_tracks(self, user_id: str, limit: int = 200) -> list[Track]:
        return await self._collect_tracks(
            f"users/{user_id}/tracks", {"access": "playable"}, limit
        )

    async def get_activity_feed(self, limit: int = 100) -> list[Track]:
        """Recent tracks from the accounts the user follows, newest first."""
        return await self._collect_tracks(
            "me/activities/tracks", {"access": "playable"}, limit, field="origin"
        )

    async def get_followed_tracks(self, limit: int = 100) -> list[Track]:
        response = await self.api_call(
            "me/followings/tracks", {"access": "playable", "limit": limit}
        )
        if isinstance(response, dict):
            response = response.get("collection", [])
        return self._to_tracks(list(response or [])[:limit])

    async def get_playlist_tracks(self, playlist_id: str) -> list[Track]:
        playlist = await self.api_call(
            f"playlists/{playlist_id}", {"access": "playable"}
        )
        return self._to_tracks(playlist.get("tracks") or [])
