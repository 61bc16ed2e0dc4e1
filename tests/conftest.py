"""Pytest fixtures and in-memory fakes for the LEX and Zoho APIs.

The fakes implement the same async methods as LexClient / ZohoClient and keep
every call, so tests can assert on exactly what reached each system. Failures
are scripted per (method, key) with ``fail(...)``; each scripted error is
raised once, in order.
"""
import os
import sys
from pathlib import Path

# Settings are read at import time; keep tests off the filesystem and the scheduler
os.environ["LOG_TO_FILE"] = "false"
os.environ["ENABLE_SYNC_SCHEDULER"] = "false"
os.environ["API_AUTH_TOKEN"] = ""

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import asyncio  # noqa: E402
import copy  # noqa: E402
from collections import defaultdict  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from lexsync.exceptions import UpstreamNotFound, UpstreamTransientError  # noqa: E402
from lexsync.jobs.daily_sync import DailyReconciler  # noqa: E402
from lexsync.services.batch_processor import BatchProcessor  # noqa: E402
from lexsync.utils import sync_log_toggle  # noqa: E402
from lexsync.utils.throttle import Throttle  # noqa: E402


def transient(system: str = "zoho", status: int = 503) -> UpstreamTransientError:
    return UpstreamTransientError(system, f"{system} unavailable", status=status)


class _Scripted:
    def __init__(self):
        self.calls: list[tuple] = []
        self._failures: dict[tuple[str, str], list[BaseException]] = defaultdict(list)

    def fail(self, method: str, key: str, *errors: BaseException) -> None:
        self._failures[(method, key)].extend(errors)

    def fail_times(self, method: str, key: str, times: int, system: str) -> None:
        self.fail(method, key, *(transient(system) for _ in range(times)))

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)

    async def _enter(self, method: str, key: str, *args) -> None:
        self.calls.append((method, key, *args))
        # yield so items in one batch interleave
        await asyncio.sleep(0)
        pending = self._failures.get((method, key))
        if pending:
            raise pending.pop(0)


class FakeLex(_Scripted):
    def __init__(self):
        super().__init__()
        self.shipments: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.listing: list[str] = []
        self.write_backs: list[tuple[str, str]] = []

    def add_shipment(self, awb: str, **fields) -> dict:
        record = {"AWB": awb, "Name": awb, "Customer_ID": fields.pop("Customer_ID", None), **fields}
        self.shipments[awb] = record
        return record

    async def get_shipment_details(self, awb):
        await self._enter("get_shipment_details", awb)
        if awb not in self.shipments:
            raise UpstreamNotFound("lex", f"No shipment details for AWB {awb}")
        return copy.deepcopy(self.shipments[awb])

    async def list_shipments(self, from_date, to_date):
        await self._enter("list_shipments", from_date.isoformat(), to_date)
        return list(self.listing)

    async def get_customer(self, customer_id):
        await self._enter("get_customer", str(customer_id))
        return copy.deepcopy(self.customers.get(str(customer_id)))

    async def write_back_shipment_id(self, awb, shipment_id):
        await self._enter("write_back_shipment_id", awb, shipment_id)
        self.write_backs.append((awb, shipment_id))
        if awb in self.shipments:
            self.shipments[awb]["Zoho_Shipment_Id"] = shipment_id
        return {"status": "success"}


class FakeZoho(_Scripted):
    def __init__(self):
        super().__init__()
        self.shipments: dict[str, dict] = {}
        self.deals: dict[str, dict] = {}
        self.accounts: dict[str, dict] = {}
        self._next_id = 5000

    async def create_shipment(self, record):
        await self._enter("create_shipment", record.get("Name", ""))
        self._next_id += 1
        shipment_id = str(self._next_id)
        self.shipments[shipment_id] = {**copy.deepcopy(record), "id": shipment_id}
        return shipment_id

    async def update_shipment(self, shipment_id, record):
        await self._enter("update_shipment", shipment_id)
        if shipment_id not in self.shipments:
            raise UpstreamNotFound("zoho", f"Shipment {shipment_id} not found")
        self.shipments[shipment_id] = {**copy.deepcopy(record), "id": shipment_id}
        return {"status": "success", "details": {"id": shipment_id}}

    async def get_shipment(self, shipment_id):
        await self._enter("get_shipment", shipment_id)
        record = self.shipments.get(shipment_id)
        return copy.deepcopy(record) if record else None

    async def find_shipment_by_awb(self, awb):
        await self._enter("find_shipment_by_awb", awb)
        for record in self.shipments.values():
            if record.get("Name") == awb:
                return copy.deepcopy(record)
        return None

    async def get_deal(self, deal_id):
        await self._enter("get_deal", deal_id)
        return copy.deepcopy(self.deals.get(deal_id))

    async def get_account(self, account_id):
        await self._enter("get_account", account_id)
        return copy.deepcopy(self.accounts.get(account_id))

    def shipments_named(self, awb: str) -> list[dict]:
        return [r for r in self.shipments.values() if r.get("Name") == awb]


@pytest.fixture
def lex():
    return FakeLex()


@pytest.fixture
def zoho():
    return FakeZoho()


@pytest.fixture
def sleeps():
    """Seconds requested from the throttle, in order."""
    return []


@pytest.fixture
def throttle(sleeps):
    async def record(seconds: float) -> None:
        sleeps.append(seconds)

    return Throttle(sleep=record)


@pytest.fixture
def processor(lex, zoho, throttle):
    return BatchProcessor(lex, zoho, throttle=throttle, batch_size=4, inter_batch_pause=2.0)


@pytest.fixture
def reconciler(lex, zoho, processor, throttle):
    return DailyReconciler(lex, zoho, processor, throttle=throttle, item_pause=0.2)


@pytest.fixture(autouse=True)
def _reset_log_toggle():
    sync_log_toggle.disable()
    yield
    sync_log_toggle.disable()


@pytest.fixture
def client(processor, reconciler):
    """TestClient with fakes on app.state; lifespan is not run."""
    from lexsync.main import app

    app.state.batch_processor = processor  # type: ignore[attr-defined]
    app.state.reconciler = reconciler  # type: ignore[attr-defined]
    try:
        yield TestClient(app)
    finally:
        del app.state.batch_processor
        del app.state.reconciler
