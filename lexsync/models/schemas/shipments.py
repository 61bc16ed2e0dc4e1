"""
Pydantic schemas for the shipment sync endpoints.
"""
from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


def _clean_ids(values: List[str], label: str) -> List[str]:
    cleaned = [str(v).strip() for v in values]
    if not cleaned:
        raise ValueError(f"{label} must be a non-empty array")
    if any(not v for v in cleaned):
        raise ValueError(f"{label} must not contain blank values")
    return cleaned


class CreateShipmentRequest(BaseModel):
    AWB: List[str] = Field(description="LEX air waybill numbers to create in Zoho")

    @field_validator("AWB")
    @classmethod
    def validate_awbs(cls, v):
        return _clean_ids(v, "AWB")

    model_config = ConfigDict(json_schema_extra={
        "example": {"AWB": ["AWB100", "AWB200"]}
    })


class UpdateShipmentRequest(BaseModel):
    shipmentIds: List[str] = Field(description="Zoho shipment ids to refresh from LEX")

    @field_validator("shipmentIds")
    @classmethod
    def validate_shipment_ids(cls, v):
        return _clean_ids(v, "shipmentIds")

    model_config = ConfigDict(json_schema_extra={
        "example": {"shipmentIds": ["5725767000001234001"]}
    })


class BatchSummary(BaseModel):
    total: int
    processed: int
    successful: int
    failed: int


class BatchSyncResponse(BaseModel):
    """Bulk endpoint response; partial failures still return 200."""
    message: str
    summary: BatchSummary
    results: List[Dict[str, Any]]
    failedUpdates: Dict[str, Any] = Field(default_factory=dict)


class ToggleLoggingRequest(BaseModel):
    enable: bool


class ToggleLoggingResponse(BaseModel):
    message: str
    status: Dict[str, bool]


class SyncRunRequest(BaseModel):
    day: Optional[date] = Field(None, alias="date", description="Day to reconcile; defaults to yesterday")

    model_config = ConfigDict(populate_by_name=True)
