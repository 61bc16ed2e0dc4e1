"""
Daily reconciliation trigger and status endpoints.
"""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Request
from lexsync.api.deps import get_reconciler
from lexsync.jobs.daily_sync import DailyReconciler, next_run_time
from lexsync.models.schemas import ResponseBase, SyncRunRequest
from lexsync.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/run",
    response_model=ResponseBase,
    summary="Run the daily reconciliation now"
)
async def run_sync(
    request: Request,
    trigger: Optional[SyncRunRequest] = None,
    reconciler: DailyReconciler = Depends(get_reconciler),
) -> ResponseBase:
    """Runs one pass synchronously; the response carries the run report.

    Returns success=False (still 200) when a run is already in progress or the
    run aborted.
    """
    request_id = request.headers.get("X-Request-ID", "unknown")
    day = trigger.day if trigger else None
    if reconciler.running:
        logger.warning("Manual sync rejected, run in progress", request_id=request_id)
        return ResponseBase(success=False, message="Daily sync already running", data=reconciler.status())

    logger.info("Manual daily sync triggered", day=day.isoformat() if day else "yesterday", request_id=request_id)
    report = await reconciler.run(day)
    return ResponseBase(
        success=report.status == "completed",
        message=f"Daily sync {report.status}",
        data=report.to_dict(),
    )


@router.get(
    "/status",
    response_model=ResponseBase,
    summary="Current reconciliation state and last run"
)
async def sync_status(reconciler: DailyReconciler = Depends(get_reconciler)) -> ResponseBase:
    data: Dict[str, Any] = reconciler.status()
    data["nextRunTime"] = next_run_time()
    return ResponseBase(message="Daily sync status", data=data)
