"""Daily LEX -> Zoho reconciliation job.

Flow (one run):
  Idle -> FetchingWindow -> Classifying -> RunningCreateBatch -> RunningUpdateBatch -> Idle

1. Window is the single day before today (LEX ``fromdate == todate``).
2. Each AWB in the window is classified: it needs an update when the LEX record
   already carries a CRM shipment id, or when the CRM already holds a shipment
   whose Name is that AWB; otherwise it needs a create.
3. The create list runs to completion before the update list starts; both
   go through the same BatchProcessor used by the HTTP endpoints, each with its
   own failed-operation queue.

The job never raises: any error aborts the run back to Idle, is logged, and
is kept on ``last_report`` for the status endpoint. The scheduler then tries
again at the next trigger.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from lexsync.config import BATCH_SETTINGS, SCHEDULER_SETTINGS
from lexsync.exceptions import UpstreamNotFound, describe_error
from lexsync.services.batch_processor import BatchProcessor, BatchRunReport, SyncMode
from lexsync.utils import get_logger, log_business_event, log_performance
from lexsync.utils.throttle import Throttle
from lexsync.utils.time import format_elapsed, utc_now, yesterday

logger = get_logger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING_WINDOW = "fetching_window"
    CLASSIFYING = "classifying"
    RUNNING_CREATE_BATCH = "running_create_batch"
    RUNNING_UPDATE_BATCH = "running_update_batch"


@dataclass
class Classification:
    create: List[str] = field(default_factory=list)
    update: List[str] = field(default_factory=list)  # CRM shipment ids
    skipped: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # awb -> error


@dataclass
class DailySyncReport:
    day: date
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: str = "running"  # running | completed | aborted
    fetched: int = 0
    classification: Optional[Classification] = None
    create: Optional[BatchRunReport] = None
    update: Optional[BatchRunReport] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "day": self.day.isoformat(),
            "status": self.status,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "fetched": self.fetched,
        }
        if self.finished_at:
            data["elapsed"] = format_elapsed(self.started_at, self.finished_at)
        if self.classification is not None:
            data["classified"] = {
                "create": len(self.classification.create),
                "update": len(self.classification.update),
                "skipped": self.classification.skipped,
            }
        if self.create is not None:
            data["create"] = {"summary": self.create.summary, "failedUpdates": self.create.failed_updates}
        if self.update is not None:
            data["update"] = {"summary": self.update.summary, "failedUpdates": self.update.failed_updates}
        if self.error is not None:
            data["error"] = self.error
        return data


class DailyReconciler:
    def __init__(
        self,
        lex_client: Any,
        zoho_client: Any,
        processor: BatchProcessor,
        *,
        throttle: Optional[Throttle] = None,
        item_pause: Optional[float] = None,
    ):
        self.lex = lex_client
        self.zoho = zoho_client
        self.processor = processor
        self.throttle = throttle or processor.throttle
        self.item_pause = float(item_pause if item_pause is not None else BATCH_SETTINGS["item_pause_seconds"])
        self.state = SyncState.IDLE
        self.last_report: Optional[DailySyncReport] = None

    def _transition(self, state: SyncState) -> None:
        logger.debug("Daily sync state change", previous=self.state.value, state=state.value)
        self.state = state

    @property
    def running(self) -> bool:
        return self.state != SyncState.IDLE

    async def _existing_shipment_id(self, awb: str) -> Optional[str]:
        """CRM shipment id for ``awb`` or None when it has never been synced."""
        try:
            details = await self.lex.get_shipment_details(awb)
        except UpstreamNotFound:
            details = {}
        cross_ref = details.get("Zoho_Shipment_Id") or details.get("id")
        if cross_ref and str(cross_ref).strip():
            return str(cross_ref).strip()

        # Created in the CRM but the write-back never landed on LEX
        found = await self.zoho.find_shipment_by_awb(awb)
        if found and found.get("id"):
            shipment_id = str(found["id"])
            logger.info("Found CRM shipment missing its LEX cross-reference", awb=awb, shipment_id=shipment_id)
            try:
                await self.lex.write_back_shipment_id(awb, shipment_id)
            except Exception as e:
                logger.warning("Cross-reference repair failed", awb=awb, shipment_id=shipment_id, error=str(e))
            return shipment_id
        return None

    async def classify(self, awbs: List[str]) -> Classification:
        result = Classification()
        for index, awb in enumerate(awbs):
            if index > 0:
                await self.throttle.pause(self.item_pause, reason="existence_check")
            try:
                shipment_id = await self._existing_shipment_id(awb)
            except Exception as e:
                # Unknown state; creating could duplicate, so leave it for the next run
                logger.warning("Existence check failed, skipping AWB", awb=awb, error=str(e))
                result.skipped[awb] = describe_error(e)
                continue
            if shipment_id:
                result.update.append(shipment_id)
            else:
                result.create.append(awb)
        return result

    async def run(self, day: Optional[date] = None) -> DailySyncReport:
        """Execute one reconciliation pass; never raises."""
        day = day or yesterday()
        report = DailySyncReport(day=day, started_at=utc_now())
        self.last_report = report
        start = time.time()
        logger.info("Daily sync started", day=day.isoformat())
        try:
            self._transition(SyncState.FETCHING_WINDOW)
            awbs = await self.lex.list_shipments(day, day)
            report.fetched = len(awbs)
            logger.info("Fetched shipments for window", day=day.isoformat(), count=len(awbs))

            self._transition(SyncState.CLASSIFYING)
            report.classification = await self.classify(awbs)

            self._transition(SyncState.RUNNING_CREATE_BATCH)
            if report.classification.create:
                report.create = await self.processor.run(report.classification.create, SyncMode.CREATE)

            self._transition(SyncState.RUNNING_UPDATE_BATCH)
            if report.classification.update:
                report.update = await self.processor.run(report.classification.update, SyncMode.UPDATE)

            report.status = "completed"
        except Exception as e:
            report.status = "aborted"
            report.error = describe_error(e)
            logger.error("Daily sync aborted", day=day.isoformat(), state=self.state.value, error=str(e), exc_info=True)
        finally:
            self._transition(SyncState.IDLE)
            report.finished_at = utc_now()

        log_business_event(
            event_type="daily_sync_finished",
            details={
                "day": day.isoformat(),
                "status": report.status,
                "fetched": report.fetched,
                "created": report.create.summary["successful"] if report.create else 0,
                "updated": report.update.summary["successful"] if report.update else 0,
            },
        )
        log_performance(operation="daily_sync", duration_ms=(time.time() - start) * 1000)
        return report

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.running,
            "lastRun": self.last_report.to_dict() if self.last_report else None,
        }


# ----------------------------- scheduler wiring ----------------------------- #
_scheduler: AsyncIOScheduler | None = None
JOB_ID = "lexsync_daily_sync"


async def _scheduled_run(reconciler: DailyReconciler) -> None:
    if reconciler.running:
        logger.warning("Previous daily sync still running, skipping trigger")
        return
    await reconciler.run()


def start_scheduler(reconciler: DailyReconciler) -> Optional[AsyncIOScheduler]:
    """Start the daily cron trigger if enabled; returns the scheduler or None."""
    global _scheduler
    if not SCHEDULER_SETTINGS["enabled"]:
        logger.info("Daily sync scheduler disabled (ENABLE_SYNC_SCHEDULER != true)")
        return None
    if _scheduler is not None:
        return _scheduler
    _scheduler = AsyncIOScheduler(timezone=str(SCHEDULER_SETTINGS["timezone"]))
    _scheduler.add_job(
        _scheduled_run,
        "cron",
        hour=int(SCHEDULER_SETTINGS["hour"]),
        minute=int(SCHEDULER_SETTINGS["minute"]),
        args=[reconciler],
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(
        "Daily sync scheduler started",
        hour=SCHEDULER_SETTINGS["hour"],
        minute=SCHEDULER_SETTINGS["minute"],
        timezone=SCHEDULER_SETTINGS["timezone"],
    )
    return _scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Daily sync scheduler stopped")


def next_run_time() -> Optional[str]:
    if _scheduler is None:
        return None
    job = _scheduler.get_job(JOB_ID)
    if job is None or job.next_run_time is None:
        return None
    return job.next_run_time.isoformat()


__all__ = [
    "SyncState",
    "Classification",
    "DailySyncReport",
    "DailyReconciler",
    "start_scheduler",
    "stop_scheduler",
    "next_run_time",
]
