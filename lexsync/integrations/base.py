"""Shared aiohttp request plumbing for the LEX and Zoho clients.

``UpstreamClient._request`` performs one HTTP call and turns every failure mode
into a typed ``UpstreamError`` carrying the system name, status and body:

    network error / timeout / 429 / 5xx -> UpstreamTransientError
    401 / 403                            -> UpstreamAuthError
    404                                  -> UpstreamNotFound
    other 4xx                            -> UpstreamRejectedError

It never retries; retry policy belongs to the sync pipeline.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Mapping, Optional

import aiohttp

from lexsync.exceptions import (
    UpstreamAuthError,
    UpstreamNotFound,
    UpstreamRejectedError,
    UpstreamTransientError,
)
from lexsync.utils import get_logger

logger = get_logger(__name__)


def decode_body(raw: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class UpstreamClient:
    system = "upstream"

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self.session = session
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        url = self._url(path)
        request_headers = await self._headers()
        if headers:
            request_headers.update(headers)
        try:
            async with self.session.request(method, url, params=params, json=json_body, headers=request_headers) as response:
                status = response.status
                raw = await response.text()
        except asyncio.TimeoutError:
            logger.warning("Upstream request timed out", system=self.system, method=method, url=url)
            raise UpstreamTransientError(self.system, f"{method} {url} timed out")
        except aiohttp.ClientError as e:
            logger.warning("Upstream client error", system=self.system, method=method, url=url, error=str(e))
            raise UpstreamTransientError(self.system, f"{method} {url} failed: {e}")

        body = decode_body(raw)
        if 200 <= status < 300:
            return body

        message = f"{self.system} {method} {path} returned {status}"
        if status == 429 or status >= 500:
            raise UpstreamTransientError(self.system, message, status=status, body=body)
        if status in (401, 403):
            raise UpstreamAuthError(self.system, message, status=status, body=body)
        if status == 404:
            raise UpstreamNotFound(self.system, message, status=status, body=body)
        raise UpstreamRejectedError(self.system, message, status=status, body=body)


__all__ = ["UpstreamClient", "decode_body"]
