"""LEX shipment -> Zoho shipment record mapping.

Public entrypoint: map_shipment(record, deal=None, account=None)

The CRM field contract is declared once in ``SHIPMENT_FIELDS`` as an ordered
table of (target field, source field, kind). Each kind has one coercion rule
and one fallback, so every declared key is always present in the output:

    text       -> str, ""  when missing (optionally truncated to FIELD_LIMITS)
    id_text    -> str(value), "" when missing
    integer    -> half-up rounded int, None when missing or not a number
    decimal2   -> float rounded half-up to 2 places, None when missing or not a number
    date       -> "YYYY-MM-DD", "" when missing or unparseable

Reference fields (deal / account lookups) are embedded as ``{"name", "id"}``
objects, or None when the lookup resolved nothing. They are never omitted.

Design principles:
- Pure functions, no I/O, no exceptions escaping for bad field values.
- Reads FIELD_LIMITS from configuration.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Optional

from lexsync.config import FIELD_LIMITS
from lexsync.utils import get_logger

logger = get_logger(__name__)

_DMY = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")


@dataclass(frozen=True, slots=True)
class FieldSpec:
    target: str
    source: str
    kind: str = "text"


SHIPMENT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("Name", "Name"),
    FieldSpec("Currency", "Currency"),
    FieldSpec("Weight_Slab", "Weight_Slab"),
    FieldSpec("Destination_State", "Destination_State"),
    FieldSpec("MIS_Status", "MIS_Status"),
    FieldSpec("Customer_ID", "Customer_ID", "id_text"),
    FieldSpec("Destination_Country", "Destination_Country"),
    FieldSpec("Country", "Country"),
    FieldSpec("Final_Inv_No", "Final_Inv_No"),
    FieldSpec("Package_Value", "Package_Value", "integer"),
    FieldSpec("Cust_ID_11", "Cust_ID_11", "id_text"),
    FieldSpec("Proforma_Value", "Proforma_Value", "integer"),
    FieldSpec("Description", "Description"),
    FieldSpec("Billed_Weight", "Billed_Weight", "decimal2"),
    FieldSpec("Proforma_No", "Proforma_No"),
    FieldSpec("IOSS_EORI", "IOSS_EORI"),
    FieldSpec("Date_of_Creation", "Date_of_Creation", "date"),
    FieldSpec("Final_Inv_Date", "Final_Inv_Date", "date"),
    FieldSpec("MIS_Weight", "MIS_Weight"),
    FieldSpec("Record_Status__s", "Record_Status__s"),
    FieldSpec("Customer_Types", "Customer_Types"),
    FieldSpec("Seller_ID", "Seller_ID"),
    FieldSpec("Service_Type", "Service_Type"),
    FieldSpec("Billed_Wt", "Billed_Wt", "decimal2"),
    FieldSpec("Product_Type", "Product_Type"),
    FieldSpec("MAWB", "MAWB"),
    FieldSpec("Value_Currency", "Value_Currency"),
    FieldSpec("Blue_Dart_Delivered_Date", "Blue_Dart_Delivered_Date", "date"),
    FieldSpec("Booked_Date", "Booked_Date", "date"),
    FieldSpec("Created_Time", "Created_Time", "date"),
    FieldSpec("Picked_Date", "Picked_Date", "date"),
    FieldSpec("Create_Pick_Up_Date", "Create_Pick_Up_Date", "date"),
    FieldSpec("Receival_Scan_Date", "Receival_Scan_Date", "date"),
    FieldSpec("Bagged_Date", "Bagged_Date", "date"),
    FieldSpec("Sent_for_Customs_Clearance", "Sent_for_Customs_Clearance", "date"),
    FieldSpec("Customs_Cleared", "Customs_Cleared", "date"),
    FieldSpec("Uplifted", "Uplifted", "date"),
    FieldSpec("Arrived_at_International_Hub_Date", "Arrived_at_International_Hub_Date", "date"),
    FieldSpec("Delivered_Date", "Delivered_Date", "date"),
    FieldSpec("Held_at_Customs", "Held_at_Customs", "date"),
    FieldSpec("Date_of_Cancellation", "Date_of_Cancellation", "date"),
    FieldSpec("Sales_Person_Name", "Sales_Person_Name"),
    FieldSpec("HS_Code", "HS_CODE"),
)

# Reference fields: target -> (which lookup, display-name key on that record)
REFERENCE_FIELDS: dict[str, tuple[str, str]] = {
    "Seller_Name": ("deal", "Deal_Name"),
    "Prospect_Name": ("deal", "Deal_Name"),
    "Cust_ID_s": ("account", "Account_Name"),
}


# ----------------------------- coercion helpers ----------------------------- #

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize_date(value: Any) -> str:
    """Normalize ISO 8601 timestamps and ``DD-MM-YYYY`` strings to ``YYYY-MM-DD``.

    Aware timestamps are converted to UTC before the date is taken. Anything
    unparseable yields "" (logged) so one bad date never aborts a record.
    """
    if _is_blank(value):
        return ""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    match = _DMY.match(text)
    try:
        if match:
            day, month, year = (int(g) for g in match.groups())
            return date(year, month, day).isoformat()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unparseable date value, using empty string", value=str(value))
        return ""
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def _to_number(value: Any) -> Optional[float]:
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def round_integer(value: Any) -> Optional[int]:
    number = _to_number(value)
    if number is None:
        return None
    # half-up, matching how the CRM rounds whole-number currency fields
    return int(math.floor(number + 0.5))


def round_decimal2(value: Any) -> Optional[float]:
    number = _to_number(value)
    if number is None:
        return None
    try:
        return float(Decimal(str(number)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    except InvalidOperation:  # pragma: no cover
        return None


def truncate(value: str, field_name: str) -> str:
    limit = FIELD_LIMITS.get(field_name)
    if limit is not None and len(value) > limit:
        return value[:limit]
    return value


def to_reference(record: Optional[Dict[str, Any]], name_key: str) -> Optional[Dict[str, str]]:
    if not record:
        return None
    return {
        "name": str(record.get(name_key) or ""),
        "id": str(record.get("id") or ""),
    }


def _coerce(column: FieldSpec, value: Any) -> Any:
    if column.kind == "date":
        return normalize_date(value)
    if column.kind == "integer":
        return round_integer(value)
    if column.kind == "decimal2":
        return round_decimal2(value)
    if _is_blank(value):
        return ""
    return truncate(str(value), column.target) if column.kind == "text" else str(value).strip()


# ----------------------------- public entrypoint ----------------------------- #

def map_shipment(
    record: Dict[str, Any],
    deal: Optional[Dict[str, Any]] = None,
    account: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the Zoho shipment record for one LEX shipment."""
    payload: Dict[str, Any] = {}
    for column in SHIPMENT_FIELDS:
        payload[column.target] = _coerce(column, record.get(column.source))

    # The AWB cross-reference lives in Name; fall back to the listing field
    if not payload["Name"]:
        payload["Name"] = str(record.get("AWB") or record.get("full_awb_number") or "")

    lookups = {"deal": deal, "account": account}
    for target, (lookup, name_key) in REFERENCE_FIELDS.items():
        payload[target] = to_reference(lookups[lookup], name_key)
    return payload


__all__ = [
    "FieldSpec",
    "SHIPMENT_FIELDS",
    "REFERENCE_FIELDS",
    "map_shipment",
    "normalize_date",
    "round_integer",
    "round_decimal2",
    "truncate",
    "to_reference",
]
