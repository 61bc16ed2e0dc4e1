"""
Zoho CRM API client.
Shipments are written through the custom module API; deals and accounts are
read-only lookups used for enrichment.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import aiohttp

from lexsync import config
from lexsync.exceptions import UpstreamAuthError, UpstreamNotFound, UpstreamRejectedError
from lexsync.integrations.base import UpstreamClient
from lexsync.integrations.zoho_auth import ZohoTokenProvider
from lexsync.utils import get_logger

logger = get_logger(__name__)


def _first_record(body: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if isinstance(data, list) and data:
        return data[0]
    return None


def check_record_results(body: Any, *, expected: int) -> List[Dict[str, Any]]:
    """Validate per-record results of a write call; raise on any record-level error."""
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, list) or len(data) != expected:
        raise UpstreamRejectedError("zoho", "Unexpected write response shape", body=body)
    for item in data:
        status = str(item.get("status", "")).lower()
        if status != "success":
            code = item.get("code", "UNKNOWN")
            raise UpstreamRejectedError(
                "zoho",
                f"Record rejected: {code} {item.get('message', '')}".strip(),
                body=item,
            )
    return data


class ZohoClient(UpstreamClient):
    """Zoho CRM v2 client authenticated with a shared token provider."""

    system = "zoho"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_provider: ZohoTokenProvider,
        base_url: str | None = None,
        *,
        shipments_module: str | None = None,
    ):
        super().__init__(session, base_url or config.ZOHO_API_BASE_URL)
        self.token_provider = token_provider
        self.shipments_module = shipments_module or config.ZOHO_SHIPMENTS_MODULE

    async def _authorized(self, method: str, path: str, token: str, **kwargs: Any) -> Any:
        headers = {"Authorization": f"Zoho-oauthtoken {token}"}
        return await super()._request(method, path, headers=headers, **kwargs)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        token = await self.token_provider.get_access_token()
        try:
            return await self._authorized(method, path, token, **kwargs)
        except UpstreamAuthError as e:
            if e.status != 401:
                raise
            # Token revoked or expired early: refresh once and replay.
            # Only the token this call sent is dropped; a newer one is kept.
            logger.warning("Zoho rejected access token, refreshing", method=method, path=path)
            self.token_provider.invalidate(token)
            token = await self.token_provider.get_access_token()
            return await self._authorized(method, path, token, **kwargs)

    # ----------------------------- shipments ----------------------------- #
    async def create_shipments(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Create shipments; returns per-record results in input order."""
        body = await self._request("POST", f"/{self.shipments_module}", json_body={"data": records})
        return check_record_results(body, expected=len(records))

    async def create_shipment(self, record: Dict[str, Any]) -> str:
        """Create one shipment and return its new CRM id."""
        results = await self.create_shipments([record])
        shipment_id = (results[0].get("details") or {}).get("id")
        if not shipment_id:
            raise UpstreamRejectedError("zoho", "Create response carried no record id", body=results[0])
        return str(shipment_id)

    async def update_shipment(self, shipment_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._request("PUT", f"/{self.shipments_module}/{shipment_id}", json_body={"data": [record]})
        return check_record_results(body, expected=1)[0]

    async def get_shipment(self, shipment_id: str) -> Optional[Dict[str, Any]]:
        try:
            body = await self._request("GET", f"/{self.shipments_module}/{shipment_id}")
        except UpstreamNotFound:
            return None
        return _first_record(body)

    async def find_shipment_by_awb(self, awb: str) -> Optional[Dict[str, Any]]:
        """Search the shipment module by the AWB kept in ``Name``; None when absent."""
        body = await self._request(
            "GET",
            f"/{self.shipments_module}/search",
            params={"criteria": f"(Name:equals:{awb})"},
        )
        return _first_record(body)

    # --------------------------- enrichment ------------------------------ #
    async def get_deal(self, deal_id: str) -> Optional[Dict[str, Any]]:
        try:
            body = await self._request("GET", f"/Deals/{deal_id}")
        except UpstreamNotFound:
            return None
        return _first_record(body)

    async def get_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        try:
            body = await self._request("GET", f"/Accounts/{account_id}")
        except UpstreamNotFound:
            return None
        return _first_record(body)


__all__ = ["ZohoClient", "check_record_results"]
