"""In-memory failed-operation queue with a deferred drain pass.

Holds sync operations (CRM create, CRM update, LEX write-back) that exhausted
their immediate retry budget, together with everything needed to replay them
without re-running the pipeline: the mapped CRM payload, the AWB and, where
known, the CRM shipment id.

Lifetime is chosen by the caller: the HTTP endpoints and the daily job each
create one queue per run (request-scoped), so concurrent requests never see
each other's entries. Nothing is persisted across restarts.

Keying: at most one entry per record id. Re-enqueueing a record replaces the
previous entry and keeps the larger retry count.

Drain semantics:
  1. Take a snapshot of the current entries and clear the live queue.
  2. Replay each snapshotted operation sequentially, up to ``max_attempts``
     times with a fixed delay between attempts.
  3. Successes are dropped; failures are re-enqueued onto the live queue
     (which may have gained entries meanwhile) with an updated error/count.
  4. Never raises: every per-item error is captured in the summary.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from lexsync.config import RETRY_POLICY
from lexsync.exceptions import describe_error
from lexsync.utils import get_logger
from lexsync.utils.backoff import fixed_delay
from lexsync.utils.retry import retry_async
from lexsync.utils.throttle import Throttle
from lexsync.utils.time import utc_now

logger = get_logger(__name__)


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    WRITE_BACK = "write_back"


@dataclass(slots=True)
class FailedOperation:
    record_id: str
    kind: OperationKind
    payload: Optional[Dict[str, Any]]
    last_error: Dict[str, Any]
    retry_count: int
    timestamp: datetime = field(default_factory=utc_now)
    awb: Optional[str] = None
    shipment_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordId": self.record_id,
            "operation": self.kind.value,
            "awb": self.awb,
            "shipmentId": self.shipment_id,
            "lastError": self.last_error,
            "retryCount": self.retry_count,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class DrainOutcome:
    record_id: str
    operation: str
    recovered: bool
    attempts: int
    error: Optional[Dict[str, Any]] = None
    value: Any = None


@dataclass
class DrainSummary:
    attempted: int = 0
    recovered: int = 0
    still_failing: int = 0
    outcomes: Dict[str, DrainOutcome] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "recovered": self.recovered,
            "stillFailing": self.still_failing,
        }


ReplayFn = Callable[[FailedOperation], Awaitable[Any]]


class FailedOperationQueue:
    def __init__(self) -> None:
        self._items: Dict[str, FailedOperation] = {}

    def enqueue(self, operation: FailedOperation) -> FailedOperation:
        existing = self._items.get(operation.record_id)
        if existing is not None:
            operation.retry_count = max(operation.retry_count, existing.retry_count)
            logger.debug("Replacing queued failed operation", record_id=operation.record_id)
        self._items[operation.record_id] = operation
        logger.warning(
            "Failed operation queued",
            record_id=operation.record_id,
            operation=operation.kind.value,
            retry_count=operation.retry_count,
            depth=len(self._items),
        )
        return operation

    def get(self, record_id: str) -> Optional[FailedOperation]:
        return self._items.get(record_id)

    def items(self) -> List[FailedOperation]:
        return list(self._items.values())

    def depth(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return self.depth()

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._items

    def snapshot(self) -> dict:
        return {
            "depth": self.depth(),
            "entries": [op.to_dict() for op in self._items.values()],
        }

    async def drain(
        self,
        replay: ReplayFn,
        *,
        throttle: Throttle,
        max_attempts: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ) -> DrainSummary:
        policy = RETRY_POLICY["drain"]
        max_attempts = int(max_attempts if max_attempts is not None else policy["max_attempts"])
        delay_seconds = float(delay_seconds if delay_seconds is not None else policy["delay_seconds"])

        batch = list(self._items.values())
        self._items.clear()
        summary = DrainSummary()
        if not batch:
            return summary

        logger.info("Draining failed-operation queue", entries=len(batch), max_attempts=max_attempts)
        for op in batch:
            summary.attempted += 1
            try:
                outcome = await retry_async(
                    lambda op=op: replay(op),
                    max_attempts=max_attempts,
                    delay=fixed_delay(delay_seconds),
                    throttle=throttle,
                    label="drain_replay",
                    context={"record_id": op.record_id, "operation": op.kind.value},
                )
                success, attempts, error, value = outcome.success, outcome.attempts, outcome.error, outcome.value
            except Exception as e:  # throttle/sleep failure; keep draining
                success, attempts, error, value = False, 0, e, None

            if success:
                summary.recovered += 1
                summary.outcomes[op.record_id] = DrainOutcome(
                    record_id=op.record_id, operation=op.kind.value, recovered=True, attempts=attempts, value=value,
                )
                logger.info("Failed operation recovered", record_id=op.record_id, operation=op.kind.value, attempts=attempts)
                continue

            op.retry_count += attempts
            op.last_error = describe_error(error) if error else op.last_error
            op.timestamp = utc_now()
            self.enqueue(op)
            summary.still_failing += 1
            summary.outcomes[op.record_id] = DrainOutcome(
                record_id=op.record_id, operation=op.kind.value, recovered=False, attempts=attempts, error=op.last_error,
            )

        logger.info(
            "Failed-operation drain completed",
            attempted=summary.attempted,
            recovered=summary.recovered,
            still_failing=summary.still_failing,
        )
        return summary


__all__ = [
    "OperationKind",
    "FailedOperation",
    "FailedOperationQueue",
    "DrainOutcome",
    "DrainSummary",
]
