"""
Persists the OAuth token pair between runs as a small JSON document.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import aiofiles

log = logging.getLogger(__name__)

# Refresh tokens are typically honoured for 30 to 90 days.
REFRESH_TOKEN_WARN_AGE_DAYS = 30


@dataclass
class StoredToken:
    access_token: str
    refresh_token: str | None = None
    expires_at: float | None = None
    token_type: str = "Bearer"
    created_at: float = field(default_factory=time.time)

    @classmethod
    def from_token_response(
        cls, payload: dict[str, Any], now: float | None = None
    ) -> "StoredToken":
        """Builds a token from an OAuth2 token endpoint response."""
        now = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=now + float(expires_in) if expires_in else None,
            token_type="Bearer",
            created_at=now,
        )

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at

    def refresh_token_age_days(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return int(max(0.0, now - self.created_at) // 86400)

    def is_refresh_token_old(self, now: float | None = None) -> bool:
        return self.refresh_token_age_days(now) > REFRESH_TOKEN_WARN_AGE_DAYS


class TokenStore:
    """Async JSON file storage for a single StoredToken."""

    def __init__(self, path: Path):
        self.path = path

    async def load(self) -> StoredToken | None:
        """Returns the stored token, or None if absent. Corrupt files are removed."""
        if not self.path.is_file():
            return None
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                data = json.loads(await f.read())
            token = StoredToken(**data)
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            log.warning(f"Failed to parse stored token: {e}, clearing invalid token")
            await self.clear()
            return None
        log.debug(f"OAuth token loaded from {self.path}")
        return token

    async def save(self, token: StoredToken) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(asdict(token), indent=2))
        log.debug(f"OAuth token saved to {self.path}")

    async def clear(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        log.info(f"OAuth token cleared from {self.path}")
        return True
