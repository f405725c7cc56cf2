"""
Downloads complete audio streams over HTTP with retry logic, request
de-duplication and cancellation.
"""

import asyncio
import logging

import aiohttp

from tideplay.api.auth import TokenProvider
from tideplay.exceptions import (
    AuthExpired,
    Forbidden,
    NetworkError,
    NotFound,
    ReauthRequired,
)

log = logging.getLogger(__name__)


class StreamFetcher:
    """
    Performs at most one download per track id at a time.

    A second request for a track that is already downloading attaches to the
    running task instead of opening another connection.
    """

    CHUNK_SIZE = 131072  # 128 KB

    def __init__(
        self,
        token_provider: TokenProvider,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 60.0,
        max_connections: int = 4,
        session: aiohttp.ClientSession | None = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self.max_connections = max_connections
        self._token_provider = token_provider
        self._session = session
        self._owns_session = session is None
        self._in_flight: dict[str, asyncio.Task] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Lazily creates the pooled session used for every download."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=600,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(
                    total=self.timeout, sock_connect=15, sock_read=30
                ),
            )
            self._owns_session = True
            log.debug(f"Created stream session with limit_per_host={self.max_connections}")
        return self._session

    async def close(self) -> None:
        """Cancels outstanding downloads and closes the session if we own it."""
        for track_id in list(self._in_flight):
            self.cancel(track_id)
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            log.debug("Stream session closed.")

    def fetch(self, track_id: str, stream_locator: str | None) -> asyncio.Task:
        """
        Starts (or joins) the download of a track.

        Returns:
            A task resolving to the complete byte buffer, or raising a
            FetchError / ReauthRequired.
        """
        task = self._in_flight.get(track_id)
        if task is not None and not task.done():
            log.debug(f"Fetch for track {track_id} already in flight; attaching.")
            return task

        task = asyncio.create_task(
            self._run(track_id, stream_locator), name=f"fetch-{track_id}"
        )
        self._in_flight[track_id] = task
        return task

    def in_flight(self, track_id: str) -> bool:
        task = self._in_flight.get(track_id)
        return task is not None and not task.done()

    def in_flight_ids(self) -> set[str]:
        return {tid for tid, task in self._in_flight.items() if not task.done()}

    def cancel(self, track_id: str) -> bool:
        task = self._in_flight.pop(track_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        log.debug(f"Cancelled fetch for track {track_id}.")
        return True

    def cancel_all_except(self, keep: set[str]) -> list[str]:
        """Cancels every in-flight fetch whose track id is not in ``keep``."""
        return [tid for tid in list(self._in_flight) if tid not in keep and self.cancel(tid)]

    async def _run(self, track_id: str, stream_locator: str | None) -> bytes:
        try:
            return await self._download_with_retries(track_id, stream_locator)
        finally:
            if self._in_flight.get(track_id) is asyncio.current_task():
                del self._in_flight[track_id]

    async def _download_with_retries(
        self, track_id: str, stream_locator: str | None
    ) -> bytes:
        if not stream_locator:
            raise NotFound(track_id, f"Track {track_id} has no stream URL")

        token = await self._token_provider.get_valid_token()
        auth_retried = False
        attempt = 1
        while True:
            try:
                log.debug(f"Fetching track {track_id} (attempt {attempt}/{self.max_attempts})")
                data = await self._download_once(track_id, stream_locator, token)
                log.debug(f"Fetched track {track_id}: {len(data)} bytes.")
                return data
            except AuthExpired as e:
                if auth_retried:
                    raise ReauthRequired(
                        f"Stream request for track {track_id} rejected after token refresh."
                    ) from e
                auth_retried = True
                log.info(f"Access token rejected while fetching track {track_id}; refreshing.")
                token = await self._token_provider.refresh(stale_token=token)
            except NetworkError as e:
                if attempt >= self.max_attempts:
                    log.warning(
                        f"[yellow]Giving up on track {track_id} after "
                        f"{attempt} attempts: {e}[/yellow]"
                    )
                    raise
                delay = self.base_delay * (2 ** (attempt - 1))
                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for track "
                    f"{track_id} failed: {e}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _download_once(self, track_id: str, url: str, token: str) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                allow_redirects=True,
            ) as response:
                self._raise_for_status(track_id, response.status)

                expected = (
                    None
                    if response.headers.get("Content-Encoding")
                    else response.content_length
                )
                buffer = bytearray()
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    buffer.extend(chunk)

                if expected is not None and len(buffer) != expected:
                    raise NetworkError(
                        track_id,
                        f"Incomplete download: got {len(buffer)} of {expected} bytes",
                    )
                return bytes(buffer)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(track_id, f"{type(e).__name__}: {e}") from e

    @staticmethod
    def _raise_for_status(track_id: str, status: int) -> None:
        if status < 400:
            return
        if status == 401:
            raise AuthExpired(track_id)
        if status == 403:
            raise Forbidden(track_id)
        if status in (404, 410):
            raise NotFound(track_id)
        raise NetworkError(track_id, f"HTTP {status} while fetching track {track_id}")
