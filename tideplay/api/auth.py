"""
Supplies valid OAuth access tokens to the fetcher and catalog client,
refreshing them through the token endpoint when they expire.
"""

import asyncio
import logging
from typing import Protocol

import aiohttp

from tideplay.exceptions import ReauthRequired
from tideplay.models.config import PlayerConfig
from tideplay.storage.token_store import StoredToken, TokenStore

log = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """The authentication collaborator consumed by network components."""

    async def get_valid_token(self) -> str: ...

    async def refresh(self, stale_token: str | None = None) -> str: ...


class TokenManager:
    """
    Owns the current token pair and serializes refreshes.

    Only one refresh runs at a time; callers that saw a 401 pass the token
    they used so that a refresh already completed by someone else is reused.
    """

    def __init__(
        self,
        config: PlayerConfig,
        store: TokenStore,
        session: aiohttp.ClientSession | None = None,
    ):
        self._config = config
        self._store = store
        self._session = session
        self._owns_session = session is None
        self._token: StoredToken | None = None
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=30, connect=10)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._token = await self._store.load()
            self._loaded = True
            if self._token and self._token.is_refresh_token_old():
                log.warning(
                    "[yellow]Stored refresh token is "
                    f"{self._token.refresh_token_age_days()} days old and may stop "
                    "working soon.[/yellow]"
                )

    async def set_token(self, token: StoredToken) -> None:
        """Stores a token obtained outside the player (e.g. the login command)."""
        async with self._lock:
            self._token = token
            self._loaded = True
            await self._store.save(token)

    async def get_valid_token(self) -> str:
        """Returns an access token, refreshing first if it is known to be expired."""
        await self._ensure_loaded()
        if self._token is None:
            raise ReauthRequired("No stored token. Run 'tideplay login' first.")
        if self._token.is_expired():
            log.info("Cached OAuth token expired, attempting refresh")
            return await self.refresh(stale_token=self._token.access_token)
        return self._token.access_token

    async def refresh(self, stale_token: str | None = None) -> str:
        """
        Exchanges the refresh token for a new access token.

        Raises:
            ReauthRequired: No refresh token is available or the grant failed.
        """
        async with self._lock:
            await self._ensure_loaded()
            current = self._token
            if (
                current is not None
                and stale_token is not None
                and current.access_token != stale_token
            ):
                return current.access_token

            if current is None or not current.refresh_token:
                raise ReauthRequired("No refresh token available; please log in again.")
            if not self._config.can_refresh_tokens:
                raise ReauthRequired(
                    "client_id/client_secret are not configured; cannot refresh token."
                )

            payload = {
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
            }
            session = await self._get_session()
            try:
                async with session.post(self._config.token_url, data=payload) as r:
                    if r.status >= 400:
                        body = await r.text()
                        raise ReauthRequired(self._describe_refresh_failure(body, r.status))
                    data = await r.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise ReauthRequired(f"OAuth refresh failed: {e}") from e

            if "access_token" not in data:
                raise ReauthRequired("Token endpoint response has no access_token.")

            new_token = StoredToken.from_token_response(data)
            if not new_token.refresh_token:
                # Some servers rotate refresh tokens, others keep the old one.
                new_token.refresh_token = current.refresh_token
                new_token.created_at = current.created_at
            self._token = new_token
            await self._store.save(new_token)
            log.info("Successfully refreshed OAuth token")
            return new_token.access_token

    @staticmethod
    def _describe_refresh_failure(body: str, status: int) -> str:
        if "invalid_grant" in body:
            return "Refresh token was rejected (invalid_grant); please log in again."
        if "invalid_client" in body:
            return "Invalid client credentials. Check client_id and client_secret."
        if "unauthorized_client" in body:
            return "Client not authorized to refresh tokens."
        return f"OAuth refresh failed with HTTP {status}."
