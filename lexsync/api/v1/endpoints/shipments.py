"""
Shipment sync endpoints (LEX -> Zoho).
"""
import time
from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException, Request, status
from lexsync.api.deps import get_batch_processor
from lexsync.exceptions import UpstreamError
from lexsync.jobs.failed_queue import FailedOperationQueue
from lexsync.models.schemas import BatchSyncResponse, CreateShipmentRequest, UpdateShipmentRequest
from lexsync.services.batch_processor import BatchProcessor, SyncMode
from lexsync.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


async def _run_batch(processor: BatchProcessor, ids: list[str], mode: SyncMode, request_id: str) -> Dict[str, Any]:
    """Run one request's batch and shape the response.

    If the run itself crashes, per-item results are not available; the 500
    carries whatever the request's failed-operation queue already holds so
    callers can see which records still need a replay.
    """
    start_time = time.time()
    logger.info("Batch sync requested", mode=mode.value, count=len(ids), request_id=request_id)
    queue = FailedOperationQueue()
    try:
        report = await processor.run(ids, mode, queue=queue)
    except Exception as e:
        logger.error(
            "Batch sync crashed",
            mode=mode.value,
            error=str(e),
            queued=queue.depth(),
            request_id=request_id,
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"Batch {mode.value} failed: {e}", "failedUpdates": queue.snapshot()},
        )
    log_performance(
        operation=f"{mode.value}_shipment_endpoint",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"count": len(ids), "request_id": request_id},
    )
    return report.to_response()


@router.post(
    "/create-shipment",
    response_model=BatchSyncResponse,
    summary="Create Zoho shipments for LEX AWBs"
)
async def create_shipments(
    payload: CreateShipmentRequest,
    request: Request,
    processor: BatchProcessor = Depends(get_batch_processor),
) -> Dict[str, Any]:
    """Fetch each AWB from LEX, enrich, map, create in Zoho and write the new id back to LEX."""
    request_id = request.headers.get("X-Request-ID", "unknown")
    return await _run_batch(processor, payload.AWB, SyncMode.CREATE, request_id)


@router.put(
    "/update-shipment",
    response_model=BatchSyncResponse,
    summary="Refresh existing Zoho shipments from LEX"
)
async def update_shipments(
    payload: UpdateShipmentRequest,
    request: Request,
    processor: BatchProcessor = Depends(get_batch_processor),
) -> Dict[str, Any]:
    request_id = request.headers.get("X-Request-ID", "unknown")
    return await _run_batch(processor, payload.shipmentIds, SyncMode.UPDATE, request_id)


@router.get(
    "/get-shipment/{shipment_id}",
    summary="Read one shipment from Zoho"
)
async def get_shipment(
    shipment_id: str,
    processor: BatchProcessor = Depends(get_batch_processor),
) -> Dict[str, Any]:
    try:
        record = await processor.zoho.get_shipment(shipment_id)
    except UpstreamError as e:
        logger.warning("Zoho shipment lookup failed", shipment_id=shipment_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Shipment {shipment_id} not found")
    return {"data": record}
