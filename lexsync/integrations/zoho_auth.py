"""Zoho OAuth access-token provider.

Caches one access token per process and refreshes it with the long-lived
refresh token shortly before the one-hour expiry. Refresh is single-flight:
concurrent callers that find the token expired queue on one lock and the
callers behind the first re-check the cache, so only one refresh request is
sent per expiry. A network error, 429 or 5xx from the token endpoint is
transient; any other rejection is an auth error.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

import aiohttp

from lexsync import config
from lexsync.exceptions import UpstreamAuthError, UpstreamTransientError
from lexsync.integrations.base import decode_body
from lexsync.utils import get_logger

logger = get_logger(__name__)


class ZohoTokenProvider:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.token_url = token_url or config.ZOHO_TOKEN_URL
        self.client_id = client_id or config.ZOHO_CLIENT_ID
        self.client_secret = client_secret or config.ZOHO_CLIENT_SECRET
        self.refresh_token = refresh_token or config.ZOHO_REFRESH_TOKEN
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else config.ZOHO_TOKEN_SETTINGS["ttl_seconds"])
        self._clock = clock
        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    def _is_valid(self) -> bool:
        return self._access_token is not None and self._clock() < self._expires_at

    async def get_access_token(self) -> str:
        if self._is_valid():
            return self._access_token  # type: ignore[return-value]
        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._is_valid():
                return self._access_token  # type: ignore[return-value]
            return await self._refresh()

    def invalidate(self, stale_token: Optional[str] = None) -> None:
        """Drop the cached token; with ``stale_token`` only if it is still the cached one."""
        if stale_token is not None and stale_token != self._access_token:
            return
        self._access_token = None
        self._expires_at = 0.0

    async def _refresh(self) -> str:
        logger.info("Refreshing Zoho access token")
        params = {
            "refresh_token": self.refresh_token or "",
            "client_id": self.client_id or "",
            "client_secret": self.client_secret or "",
            "grant_type": "refresh_token",
        }
        try:
            async with self.session.post(self.token_url, params=params) as response:
                status = response.status
                raw = await response.text()
        except asyncio.TimeoutError:
            logger.warning("Zoho token refresh timed out")
            raise UpstreamTransientError("zoho", "Token refresh timed out")
        except aiohttp.ClientError as e:
            logger.warning("Zoho token refresh failed", error=str(e))
            raise UpstreamTransientError("zoho", f"Token refresh failed: {e}")

        data = decode_body(raw)
        if status == 429 or status >= 500:
            logger.warning("Zoho token endpoint unavailable", status_code=status)
            raise UpstreamTransientError("zoho", f"Token refresh returned {status}", status=status, body=data)

        token = data.get("access_token") if isinstance(data, dict) else None
        if status != 200 or not token:
            logger.error("Zoho token refresh rejected", status_code=status, response=data)
            raise UpstreamAuthError("zoho", "Token refresh rejected", status=status, body=data)

        self._access_token = token
        self._expires_at = self._clock() + self.ttl_seconds
        self.refresh_count += 1
        logger.info("Zoho access token refreshed", ttl_seconds=self.ttl_seconds)
        return token


__all__ = ["ZohoTokenProvider"]
