"""
LEX (source logistics platform) API client.
Reads shipment and customer records and writes back CRM shipment IDs.
"""
from __future__ import annotations

import json
import re
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp

from lexsync import config
from lexsync.exceptions import UpstreamNotFound, UpstreamRejectedError
from lexsync.integrations.base import UpstreamClient
from lexsync.utils import get_logger
from lexsync.utils.time import format_lex_date

logger = get_logger(__name__)

# The list endpoint sometimes prefixes its JSON array with a plain-text count
_COUNT_PREFIX = re.compile(r"^\s*Customer Shipment Count \d+")


def parse_awb_listing(raw: Any) -> List[str]:
    """Extract ordered, de-duplicated AWB numbers from a LEX listing response."""
    data = raw
    if isinstance(data, str):
        cleaned = _COUNT_PREFIX.sub("", data).strip()
        if not cleaned:
            return []
        try:
            data = json.loads(cleaned)
        except ValueError as e:
            raise UpstreamRejectedError("lex", f"Unparseable shipment listing: {e}", body=raw[:500])
    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("data", [])
    if not isinstance(data, list):
        raise UpstreamRejectedError("lex", f"Expected a list of shipments, got {type(data).__name__}", body=data)

    seen: set[str] = set()
    awbs: List[str] = []
    for item in data:
        awb = item.get("full_awb_number") if isinstance(item, dict) else None
        if not awb:
            continue
        awb = str(awb).strip()
        if awb and awb not in seen:
            seen.add(awb)
            awbs.append(awb)
    return awbs


class LexClient(UpstreamClient):
    """LEX shipment/customer API client."""

    system = "lex"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str | None = None,
        *,
        token: str | None = None,
        customer_token: str | None = None,
    ):
        super().__init__(session, base_url or config.LEX_API_BASE_URL)
        self.token = token if token is not None else config.LEX_BEARER_TOKEN
        self.customer_token = customer_token if customer_token is not None else (config.LEX_CUSTOMER_BEARER_TOKEN or self.token)

    async def _headers(self) -> dict[str, str]:
        headers = await super()._headers()
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def get_shipment_details(self, awb: str) -> Dict[str, Any]:
        """Fetch one shipment record by AWB."""
        data = await self._request("GET", "/shipment/details", params={"AWB": awb})
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict) or not data:
            raise UpstreamNotFound(self.system, f"No shipment details for AWB {awb}", body=data)
        return data

    async def list_shipments(self, from_date: date, to_date: date) -> List[str]:
        """AWB numbers of shipments created in ``[from_date, to_date]``."""
        body = {"fromdate": format_lex_date(from_date), "todate": format_lex_date(to_date)}
        raw = await self._request("GET", "/shipment/zoho", json_body=body)
        awbs = parse_awb_listing(raw)
        logger.info("Fetched shipment listing from LEX", from_date=body["fromdate"], to_date=body["todate"], count=len(awbs))
        return awbs

    async def get_customer(self, customer_id: str | int) -> Optional[Dict[str, Any]]:
        """Customer record (first element of the LEX list) or None when absent."""
        headers = {"Authorization": f"Bearer {self.customer_token}"} if self.customer_token else None
        data = await self._request("GET", "/customer/details", params={"Customer_Id": str(customer_id)}, headers=headers)
        if isinstance(data, list):
            return data[0] if data else None
        if isinstance(data, dict) and data:
            return data
        return None

    async def write_back_shipment_id(self, awb: str, shipment_id: str) -> Any:
        """Store the CRM shipment id on the LEX record."""
        return await self._request(
            "GET",
            "/shipment/update",
            params={"AWB": awb, "Zoho_Shipment_Id": str(shipment_id)},
        )


__all__ = ["LexClient", "parse_awb_listing"]
