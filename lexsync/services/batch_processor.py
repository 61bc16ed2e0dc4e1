"""Batched shipment sync engine (LEX -> Zoho).

Single public entrypoint `BatchProcessor.run(ids, mode)` that:
1. Splits the id list into fixed-size batches (BATCH_SETTINGS["batch_size"]).
2. Runs batches strictly in order with a fixed pause between them; items inside
   a batch run concurrently and all settle before the next batch starts.
3. Per item runs fetch -> enrich -> map -> submit -> write-back, each stage
   strictly after the previous one:
     * create mode: id is an AWB; POST the mapped record, then write the new
       CRM id back to LEX.
     * update mode: id is a CRM shipment id; read the CRM record for its AWB,
       fetch the LEX record, PUT the mapped record, then confirm the id on LEX.
4. Submit retries use a fixed delay, write-back retries use exponential
   backoff; both loops are sequential awaits.
5. A submit or write-back that exhausts its retries yields a failed item and a
   FailedOperation (mapped payload included) on the caller's queue.
6. After the batches, the queue is drained once; recovered items flip to
   success in the result list.

Result ordering: results[i] always corresponds to ids[i].

Propagation: per-item errors are captured in ItemResult; an unexpected error
that escapes a whole batch marks every item of that batch failed and the run
continues with the next batch.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from lexsync.config import BATCH_SETTINGS, RETRY_POLICY
from lexsync.exceptions import BatchFailure, UpstreamNotFound, ValidationError, describe_error
from lexsync.jobs.failed_queue import DrainSummary, FailedOperation, FailedOperationQueue, OperationKind
from lexsync.services.enrichment import EnrichmentResolver
from lexsync.services.shipment_mapper import map_shipment
from lexsync.utils import get_logger, log_business_event, log_performance
from lexsync.utils.backoff import exponential_delay, fixed_delay
from lexsync.utils.retry import RetryOutcome, retry_async
from lexsync.utils.throttle import Throttle

logger = get_logger(__name__)


class SyncMode(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(slots=True)
class ItemResult:
    record_id: str
    status: str  # success | error
    awb: Optional[str] = None
    shipment_id: Optional[str] = None
    stage: Optional[str] = None  # fetch | submit | write_back | duplicate | pipeline | batch
    error: Optional[Dict[str, Any]] = None
    attempts: int = 0
    queued: bool = False
    recovered: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.record_id,
            "status": self.status,
            "awb": self.awb,
            "shipmentId": self.shipment_id,
            "attempts": self.attempts,
        }
        if self.status != "success":
            data.update({"stage": self.stage, "error": self.error, "queued": self.queued})
        if self.recovered:
            data["recovered"] = True
        return data


@dataclass
class BatchRunReport:
    mode: SyncMode
    results: List[ItemResult]
    failed_updates: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    drain: Optional[DrainSummary] = None
    batches: int = 0

    @property
    def summary(self) -> dict[str, int]:
        successful = sum(1 for r in self.results if r.ok)
        return {
            "total": len(self.results),
            "processed": len(self.results),
            "successful": successful,
            "failed": len(self.results) - successful,
        }

    def to_response(self) -> dict[str, Any]:
        verb = "create" if self.mode == SyncMode.CREATE else "update"
        return {
            "message": f"Batch {verb} completed",
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
            "failedUpdates": self.failed_updates,
        }


def partition(ids: List[str], size: int) -> List[List[str]]:
    size = max(1, int(size))
    return [ids[i:i + size] for i in range(0, len(ids), size)]


class BatchProcessor:
    """Encapsulates the fetch/enrich/map/submit/write-back pipeline for one run."""

    def __init__(
        self,
        lex_client: Any,
        zoho_client: Any,
        *,
        resolver: Optional[EnrichmentResolver] = None,
        throttle: Optional[Throttle] = None,
        batch_size: Optional[int] = None,
        inter_batch_pause: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        submit_policy: Optional[Dict[str, float]] = None,
        write_back_policy: Optional[Dict[str, float]] = None,
    ):
        self.lex = lex_client
        self.zoho = zoho_client
        self.resolver = resolver or EnrichmentResolver(lex_client, zoho_client)
        self.throttle = throttle or Throttle()
        self.batch_size = int(batch_size or BATCH_SETTINGS["batch_size"])
        self.inter_batch_pause = float(inter_batch_pause if inter_batch_pause is not None else BATCH_SETTINGS["inter_batch_pause_seconds"])
        self.max_concurrency = int(max_concurrency if max_concurrency is not None else BATCH_SETTINGS["max_concurrency"])
        self.submit_policy = dict(submit_policy or RETRY_POLICY["submit"])
        self.write_back_policy = dict(write_back_policy or RETRY_POLICY["write_back"])

    # ----------------------------- retry wrappers ----------------------------- #
    async def _with_fixed_retry(self, operation, label: str, **context: Any) -> RetryOutcome:
        return await retry_async(
            operation,
            max_attempts=int(self.submit_policy["max_attempts"]),
            delay=fixed_delay(float(self.submit_policy["delay_seconds"])),
            throttle=self.throttle,
            label=label,
            context=context,
        )

    async def _with_backoff_retry(self, operation, label: str, **context: Any) -> RetryOutcome:
        return await retry_async(
            operation,
            max_attempts=int(self.write_back_policy["max_attempts"]),
            delay=exponential_delay(
                base=float(self.write_back_policy["base_seconds"]),
                factor=float(self.write_back_policy["factor"]),
                max_seconds=float(self.write_back_policy.get("max_seconds", 30.0)),
            ),
            throttle=self.throttle,
            label=label,
            context=context,
        )

    # ----------------------------- item pipeline ----------------------------- #
    async def _map_record(self, details: Dict[str, Any], awb: str) -> Dict[str, Any]:
        enrichment = await self.resolver.enrich(details.get("Customer_ID"))
        payload = map_shipment(details, enrichment.deal, enrichment.account)
        if not payload["Name"]:
            payload["Name"] = awb
        logger.detail("Mapped shipment payload", awb=awb, payload=payload)
        return payload

    async def _write_back(self, result: ItemResult, queue: FailedOperationQueue, payload: Dict[str, Any]) -> ItemResult:
        awb, shipment_id = result.awb or "", result.shipment_id or ""
        outcome = await self._with_backoff_retry(
            lambda: self.lex.write_back_shipment_id(awb, shipment_id),
            "lex_write_back",
            awb=awb,
            shipment_id=shipment_id,
        )
        result.attempts += outcome.attempts
        if outcome.success:
            logger.detail("LEX write-back acknowledged", awb=awb, shipment_id=shipment_id, response=outcome.value)
            return result
        return self._fail(
            result, queue, "write_back", outcome,
            kind=OperationKind.WRITE_BACK, payload=payload,
        )

    def _fail(
        self,
        result: ItemResult,
        queue: Optional[FailedOperationQueue],
        stage: str,
        outcome: RetryOutcome,
        *,
        kind: Optional[OperationKind] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ItemResult:
        result.status = "error"
        result.stage = stage
        result.error = describe_error(outcome.error) if outcome.error else {"message": "unknown error"}
        if kind is not None and queue is not None:
            queue.enqueue(FailedOperation(
                record_id=result.record_id,
                kind=kind,
                payload=payload,
                last_error=result.error,
                retry_count=outcome.attempts,
                awb=result.awb,
                shipment_id=result.shipment_id,
            ))
            result.queued = True
        return result

    async def _create_item(self, awb: str, queue: FailedOperationQueue) -> ItemResult:
        result = ItemResult(record_id=awb, status="success", awb=awb)

        fetched = await self._with_fixed_retry(lambda: self.lex.get_shipment_details(awb), "lex_fetch_shipment", awb=awb)
        result.attempts += fetched.attempts
        if not fetched.success:
            return self._fail(result, None, "fetch", fetched)

        payload = await self._map_record(fetched.value, awb)

        created = await self._with_fixed_retry(lambda: self.zoho.create_shipment(payload), "zoho_create_shipment", awb=awb)
        result.attempts += created.attempts
        if not created.success:
            return self._fail(result, queue, "submit", created, kind=OperationKind.CREATE, payload=payload)

        result.shipment_id = str(created.value)
        logger.info("Shipment created in Zoho", awb=awb, shipment_id=result.shipment_id)
        return await self._write_back(result, queue, payload)

    async def _update_item(self, shipment_id: str, queue: FailedOperationQueue) -> ItemResult:
        result = ItemResult(record_id=shipment_id, status="success", shipment_id=shipment_id)

        existing = await self._with_fixed_retry(lambda: self.zoho.get_shipment(shipment_id), "zoho_fetch_shipment", shipment_id=shipment_id)
        result.attempts += existing.attempts
        if existing.success and not existing.value:
            existing = RetryOutcome(
                success=False, value=None, attempts=existing.attempts,
                error=UpstreamNotFound("zoho", f"Shipment {shipment_id} not found"),
            )
        if not existing.success:
            return self._fail(result, None, "fetch", existing)

        awb = str(existing.value.get("Name") or "").strip()
        result.awb = awb or None
        if not awb:
            missing = RetryOutcome(success=False, value=None, attempts=0, error=UpstreamNotFound("zoho", f"Shipment {shipment_id} has no AWB in Name"))
            return self._fail(result, None, "fetch", missing)

        fetched = await self._with_fixed_retry(lambda: self.lex.get_shipment_details(awb), "lex_fetch_shipment", awb=awb)
        result.attempts += fetched.attempts
        if not fetched.success:
            return self._fail(result, None, "fetch", fetched)

        payload = await self._map_record(fetched.value, awb)

        updated = await self._with_fixed_retry(lambda: self.zoho.update_shipment(shipment_id, payload), "zoho_update_shipment", shipment_id=shipment_id, awb=awb)
        result.attempts += updated.attempts
        if not updated.success:
            return self._fail(result, queue, "submit", updated, kind=OperationKind.UPDATE, payload=payload)

        logger.info("Shipment updated in Zoho", awb=awb, shipment_id=shipment_id)
        logger.detail("Zoho update response", shipment_id=shipment_id, response=updated.value)
        return await self._write_back(result, queue, payload)

    async def _process_item(self, record_id: str, mode: SyncMode, queue: FailedOperationQueue) -> ItemResult:
        try:
            if mode == SyncMode.CREATE:
                return await self._create_item(record_id, queue)
            return await self._update_item(record_id, queue)
        except Exception as e:
            logger.error("Unexpected pipeline error", record_id=record_id, mode=mode.value, error=str(e), exc_info=True)
            return ItemResult(record_id=record_id, status="error", stage="pipeline", error=describe_error(e))

    async def _run_batch(self, batch: List[str], mode: SyncMode, queue: FailedOperationQueue) -> List[ItemResult]:
        if self.max_concurrency > 0:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def guarded(record_id: str) -> ItemResult:
                async with semaphore:
                    return await self._process_item(record_id, mode, queue)

            return list(await asyncio.gather(*(guarded(r) for r in batch)))
        return list(await asyncio.gather(*(self._process_item(r, mode, queue) for r in batch)))

    # ----------------------------- public API ----------------------------- #
    async def process_batch(self, ids: List[str], mode: SyncMode, queue: FailedOperationQueue) -> List[ItemResult]:
        """Run all batches; returns one ItemResult per input id, in input order."""
        results, _ = await self._process(ids, mode, queue)
        return results

    async def _process(self, ids: List[str], mode: SyncMode, queue: FailedOperationQueue) -> Tuple[List[ItemResult], int]:
        """Results in input order plus the number of batches actually run."""
        record_ids = [str(i).strip() for i in ids]
        results: List[Optional[ItemResult]] = [None] * len(record_ids)

        # A repeated AWB inside one create run would create two CRM shipments
        first_seen: Dict[str, int] = {}
        pending: List[int] = []
        for index, record_id in enumerate(record_ids):
            if mode == SyncMode.CREATE and record_id in first_seen:
                results[index] = ItemResult(
                    record_id=record_id, status="error", awb=record_id, stage="duplicate",
                    error=describe_error(ValidationError(f"Duplicate of item {first_seen[record_id]} in this request")),
                )
                continue
            first_seen.setdefault(record_id, index)
            pending.append(index)

        batches = partition(pending, self.batch_size)  # type: ignore[arg-type]
        for batch_index, positions in enumerate(batches):
            if batch_index > 0:
                await self.throttle.pause(self.inter_batch_pause, reason="inter_batch")
            batch_ids = [record_ids[p] for p in positions]
            logger.info("Processing batch", mode=mode.value, batch=batch_index + 1, of=len(batches), size=len(batch_ids))
            try:
                batch_results = await self._run_batch(batch_ids, mode, queue)
            except Exception as e:
                failure = BatchFailure(batch_index, e)
                logger.error("Batch aborted", batch=batch_index + 1, error=str(failure), exc_info=True)
                batch_results = [
                    ItemResult(record_id=r, status="error", stage="batch", error=describe_error(failure))
                    for r in batch_ids
                ]
            for position, item in zip(positions, batch_results):
                results[position] = item

        return [r for r in results if r is not None], len(batches)

    async def replay(self, op: FailedOperation) -> Dict[str, Any]:
        """Re-execute one queued operation (single attempt; the drain loop retries).

        A successful create/update is converted in place into a pending
        write-back so a later attempt never submits the record twice.
        """
        if op.kind == OperationKind.CREATE:
            op.shipment_id = str(await self.zoho.create_shipment(op.payload or {}))
            op.kind = OperationKind.WRITE_BACK
        elif op.kind == OperationKind.UPDATE:
            await self.zoho.update_shipment(op.shipment_id or "", op.payload or {})
            op.kind = OperationKind.WRITE_BACK
        await self.lex.write_back_shipment_id(op.awb or "", op.shipment_id or "")
        return {"shipmentId": op.shipment_id}

    async def run(
        self,
        ids: List[str],
        mode: SyncMode,
        *,
        queue: Optional[FailedOperationQueue] = None,
        drain: bool = True,
    ) -> BatchRunReport:
        start = time.time()
        queue = queue if queue is not None else FailedOperationQueue()
        results, batch_count = await self._process(ids, mode, queue)
        report = BatchRunReport(mode=mode, results=results, batches=batch_count)

        queued = {op.record_id: op.to_dict() for op in queue.items()}
        if drain and queued:
            report.drain = await queue.drain(self.replay, throttle=self.throttle)
            by_id = {r.record_id: r for r in results if r.stage != "duplicate"}
            for record_id, outcome in report.drain.outcomes.items():
                entry = {"queued": queued.get(record_id), "drainAttempts": outcome.attempts}
                if outcome.recovered:
                    entry["status"] = "recovered"
                    item = by_id.get(record_id)
                    if item is not None:
                        item.status = "success"
                        item.recovered = True
                        item.shipment_id = (outcome.value or {}).get("shipmentId") or item.shipment_id
                else:
                    entry["status"] = "still_failing"
                    entry["lastError"] = outcome.error
                report.failed_updates[record_id] = entry
        else:
            report.failed_updates = {rid: {"queued": q, "status": "queued"} for rid, q in queued.items()}

        summary = report.summary
        log_business_event(
            event_type=f"shipments_{mode.value}_batch_completed",
            details={**summary, "queued": len(queued), "still_queued": queue.depth()},
        )
        log_performance(
            operation=f"batch_{mode.value}",
            duration_ms=(time.time() - start) * 1000,
            additional_data={"items": len(results), "batches": report.batches},
        )
        return report


__all__ = ["BatchProcessor", "BatchRunReport", "ItemResult", "SyncMode", "partition"]
