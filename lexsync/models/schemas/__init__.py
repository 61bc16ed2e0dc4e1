from .base import ResponseBase
from .shipments import (
    CreateShipmentRequest,
    UpdateShipmentRequest,
    BatchSummary,
    BatchSyncResponse,
    ToggleLoggingRequest,
    ToggleLoggingResponse,
    SyncRunRequest,
)

__all__ = [
    "ResponseBase",
    "CreateShipmentRequest",
    "UpdateShipmentRequest",
    "BatchSummary",
    "BatchSyncResponse",
    "ToggleLoggingRequest",
    "ToggleLoggingResponse",
    "SyncRunRequest",
]
