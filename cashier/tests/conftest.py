import asyncio
import os
import sys
from typing import Optional

import pytest

# Allow running pytest from either the repo root or from within `cashier/`.
# Tests import `cashier.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from cashier.app.connectivity import Connectivity
from cashier.app.errors import RemoteUnavailable
from cashier.app.local_store import LocalRecordStore, MemoryKeyValueStore
from cashier.app.remote_store import RemoteRecordStore
from cashier.app.sync_engine import SyncEngine
from cashier.app.transport import InProcessTransport


class FlakyTransport:
    """In-process transport with switchable failures and a call log."""

    def __init__(self, store: RemoteRecordStore):
        self.inner = InProcessTransport(store)
        self.fail_upserts = False
        self.fail_upsert_ids: set[str] = set()
        self.fail_list = False
        self.fail_deletes = False
        # When set, upserts wait on this event before reaching the store.
        self.hold_upserts: Optional[asyncio.Event] = None
        self.calls: list[tuple[str, str]] = []

    async def list_all(self):
        self.calls.append(("list", ""))
        if self.fail_list:
            raise RemoteUnavailable("list down")
        return await self.inner.list_all()

    async def upsert_one(self, order):
        self.calls.append(("upsert", order["id"]))
        if self.hold_upserts is not None:
            await self.hold_upserts.wait()
        if self.fail_upserts or order["id"] in self.fail_upsert_ids:
            raise RemoteUnavailable("upsert down")
        return await self.inner.upsert_one(order)

    async def delete_one(self, order_id):
        self.calls.append(("delete", order_id))
        if self.fail_deletes:
            raise RemoteUnavailable("delete down")
        return await self.inner.delete_one(order_id)

    async def aclose(self):
        return None


def sample_order_data(**overrides):
    data = {
        "items": [{"name": "Spaghetti", "price": 12.5, "quantity": 2}],
        "total": 25.0,
        "amountPaid": 30.0,
        "change": 5.0,
        "paymentMethod": "cash",
        "customerName": "Table 4",
    }
    data.update(overrides)
    return data


def stored_order(order_id: str, **overrides):
    order = {
        "id": order_id,
        "items": [{"name": "Cola", "price": 2.5, "quantity": 1}],
        "total": 2.5,
        "amountPaid": 2.5,
        "change": 0,
        "paymentMethod": "cash",
        "timestamp": "2026-10-18T18:00:00+00:00",
        "version": 1,
        "syncedToCloud": True,
        "lastModified": "2026-10-18T18:00:00+00:00",
    }
    order.update(overrides)
    return order


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def local(kv):
    return LocalRecordStore(kv)


@pytest.fixture
def remote(tmp_path):
    return RemoteRecordStore(str(tmp_path / "central"))


@pytest.fixture
def transport(remote):
    return FlakyTransport(remote)


@pytest.fixture
def connectivity():
    return Connectivity(online=True)


@pytest.fixture
def engine(local, transport, connectivity):
    return SyncEngine(local, transport, connectivity)


@pytest.fixture
def order_data():
    return sample_order_data


@pytest.fixture
def make_stored():
    return stored_order
