"""
Verbose sync-logging toggle endpoints.
"""
from fastapi import APIRouter
from lexsync.models.schemas import ToggleLoggingRequest, ToggleLoggingResponse
from lexsync.utils import get_logger, sync_log_toggle

router = APIRouter()
logger = get_logger(__name__)


@router.post("/toggle", response_model=ToggleLoggingResponse, summary="Enable or disable verbose sync logging")
async def toggle_logging(payload: ToggleLoggingRequest) -> ToggleLoggingResponse:
    status = sync_log_toggle.enable() if payload.enable else sync_log_toggle.disable()
    state = "enabled" if payload.enable else "disabled"
    logger.info("Verbose sync logging toggled", enabled=payload.enable)
    return ToggleLoggingResponse(message=f"Logging {state}", status=status)


@router.get("/status", response_model=ToggleLoggingResponse, summary="Verbose sync logging state")
async def logging_status() -> ToggleLoggingResponse:
    status = sync_log_toggle.status()
    return ToggleLoggingResponse(
        message=f"Logging is {'enabled' if status['isEnabled'] else 'disabled'}",
        status=status,
    )
