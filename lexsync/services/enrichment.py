"""Deal/account enrichment for shipment records.

Given the LEX customer that owns a shipment, resolve the CRM deal and account
that customer is linked to. Each lookup degrades independently to None: a
missing link, a 404, or any error while calling either system never reaches
the caller.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from lexsync.utils import get_logger

logger = get_logger(__name__)

Record = Dict[str, Any]


@dataclass(slots=True)
class Enrichment:
    deal: Optional[Record] = None
    account: Optional[Record] = None

    def as_dict(self) -> dict[str, Optional[Record]]:
        return {"deal": self.deal, "account": self.account}


def clean_crm_id(value: Any) -> Optional[str]:
    """Strip whitespace and the ``zcrm_`` export prefix; None when empty."""
    if value is None:
        return None
    text = str(value).strip().replace("zcrm_", "")
    return text or None


class EnrichmentResolver:
    def __init__(self, lex_client: Any, zoho_client: Any):
        self.lex = lex_client
        self.zoho = zoho_client

    async def _lookup(self, kind: str, record_id: Optional[str], fetch: Callable[[str], Awaitable[Optional[Record]]], customer_id: Any) -> Optional[Record]:
        if not record_id:
            logger.debug(f"No linked {kind} for customer", customer_id=customer_id)
            return None
        try:
            return await fetch(record_id)
        except Exception as e:
            logger.warning(
                f"{kind.capitalize()} lookup failed, continuing without it",
                customer_id=customer_id,
                record_id=record_id,
                error=str(e),
            )
            return None

    async def enrich(self, customer_id: Any) -> Enrichment:
        if customer_id is None or not str(customer_id).strip():
            return Enrichment()
        try:
            customer = await self.lex.get_customer(customer_id)
        except Exception as e:
            logger.warning("Customer lookup failed, skipping enrichment", customer_id=customer_id, error=str(e))
            return Enrichment()
        if not customer:
            return Enrichment()

        deal, account = await asyncio.gather(
            self._lookup("deal", clean_crm_id(customer.get("Zoho_Deal_ID")), self.zoho.get_deal, customer_id),
            self._lookup("account", clean_crm_id(customer.get("Zoho_Cust_ID")), self.zoho.get_account, customer_id),
        )
        return Enrichment(deal=deal, account=account)


__all__ = ["Enrichment", "EnrichmentResolver", "clean_crm_id"]
