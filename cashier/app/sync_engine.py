"""
Offline-first order sync.

Every mutation commits to the device store first and then schedules a
best-effort push to the central store as a separate task. `full_sync` is the
reconciliation pass: upload unsynced local records, then download and merge
the central list through `conflicts.resolve`.

All read-modify-write cycles on the device store happen under one asyncio
lock and re-read the current set right before writing, so overlapping passes
and pushes apply their changes per record instead of replacing each other's
snapshots. A record is only flagged as synced if its version is still the one
that was pushed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel

from .conflicts import resolve
from .connectivity import Connectivity
from .errors import IdCollisionError, OrderAlreadyActive, OrderNotFound, VersionConflict
from .integrity import IntegrityReport, check_integrity
from .jsonlog import json_log
from .local_store import LocalRecordStore
from .orders import LOCAL_ONLY_FIELDS, Order, OrderIn, new_order_id, now_iso, order_version, short_id, strip_local_fields
from .transport import RemoteTransport

MAX_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class SyncResult:
    uploaded: int = 0
    downloaded: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"uploaded": self.uploaded, "downloaded": self.downloaded}


def _wire(order: dict[str, Any]) -> dict[str, Any]:
    payload = strip_local_fields(order)
    if payload.get("version") is None:
        payload["version"] = 1
    return payload


def _find_index(orders: list[Any], order_id: str) -> Optional[int]:
    for idx, o in enumerate(orders):
        if isinstance(o, dict) and o.get("id") == order_id:
            return idx
    return None


class SyncEngine:
    def __init__(
        self,
        local: LocalRecordStore,
        transport: RemoteTransport,
        connectivity: Optional[Connectivity] = None,
        *,
        id_factory: Callable[[], str] = new_order_id,
        clock: Callable[[], str] = now_iso,
    ):
        self.local = local
        self.transport = transport
        self.connectivity = connectivity if connectivity is not None else Connectivity()
        self._id_factory = id_factory
        self._clock = clock
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        # Latest push or central delete per order id; work for one id runs in order.
        self._push_tasks: dict[str, asyncio.Task] = {}
        self.last_sync_at: Optional[str] = None
        self.last_result: Optional[SyncResult] = None

    @property
    def online(self) -> bool:
        return self.connectivity.online

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Wait for every push/delete task scheduled so far (and any they trigger)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Mutations.

    async def create(self, order_data) -> dict[str, Any]:
        data = order_data if isinstance(order_data, OrderIn) else OrderIn.model_validate(order_data)
        record = data.to_record()
        for key in ("id", "version", *LOCAL_ONLY_FIELDS):
            record.pop(key, None)

        async with self._lock:
            orders = self.local.list()
            taken = {o.get("id") for o in orders if isinstance(o, dict)}
            for _ in range(MAX_ID_ATTEMPTS):
                order_id = self._id_factory()
                if order_id not in taken:
                    break
                json_log("error", "sync.create.id_collision", order_id=order_id)
            else:
                raise IdCollisionError(f"could not allocate a unique order id after {MAX_ID_ATTEMPTS} attempts")

            stamp = self._clock()
            order = {
                "id": order_id,
                **record,
                "timestamp": record.get("timestamp") or stamp,
                "syncedToCloud": False,
                "lastModified": stamp,
                "version": 1,
            }
            orders.insert(0, order)
            self.local.replace_all(orders)

        json_log("info", "sync.create.done", order_id=short_id(order_id), total=order.get("total"))
        self._schedule_push(order)
        return dict(order)

    async def update(self, order) -> dict[str, Any]:
        if isinstance(order, BaseModel):
            order = order.model_dump(by_alias=True, exclude_none=True)
        if not isinstance(order, dict):
            raise TypeError("order must be a dict")
        record = Order.model_validate(strip_local_fields(order)).to_record()
        order_id = record["id"]
        incoming_version = record.get("version")

        async with self._lock:
            orders = self.local.list()
            idx = _find_index(orders, order_id)
            if idx is None:
                json_log("warn", "sync.update.not_found", order_id=order_id)
                raise OrderNotFound(order_id)
            stored = orders[idx]
            stored_version = stored.get("version")
            # The caller edited a copy older than what is stored: the new version would not dominate.
            if isinstance(incoming_version, int) and isinstance(stored_version, int) and incoming_version < stored_version:
                json_log(
                    "warn",
                    "sync.update.conflict",
                    order_id=order_id,
                    incoming_version=incoming_version,
                    stored_version=stored_version,
                )
                raise VersionConflict(order_id, incoming_version + 1, stored_version)

            # A copy without a version edits whatever is stored now.
            base_version = incoming_version if isinstance(incoming_version, int) else order_version(stored)
            stamp = self._clock()
            updated = {
                **record,
                "timestamp": stored.get("timestamp") or record.get("timestamp"),
                "syncedToCloud": False,
                "lastModified": stamp,
                "version": base_version + 1,
            }
            orders[idx] = updated
            self.local.replace_all(orders)

        json_log("info", "sync.update.done", order_id=short_id(order_id), version=updated["version"])
        self._schedule_push(updated)
        return dict(updated)

    async def delete(self, order_id: str) -> dict[str, Any]:
        async with self._lock:
            orders = self.local.list()
            idx = _find_index(orders, order_id)
            if idx is None:
                json_log("warn", "sync.delete.not_found", order_id=order_id)
                raise OrderNotFound(order_id)
            target = orders[idx]
            # A failed bin write does not block the deletion itself.
            self.local.append_deleted({**target, "deletedAt": self._clock(), "remoteDeleted": False})
            self.local.replace_all([o for o in orders if not (isinstance(o, dict) and o.get("id") == order_id)])

        json_log("info", "sync.delete.done", order_id=short_id(order_id))
        if self.online:
            self._chain(order_id, lambda prev: self._remote_delete(order_id, after=prev))
        return dict(target)

    async def recover(self, order_id: str) -> dict[str, Any]:
        async with self._lock:
            deleted = self.local.list_deleted()
            idx = _find_index(deleted, order_id)
            if idx is None:
                raise OrderNotFound(order_id, where="deleted orders")
            orders = self.local.list()
            if _find_index(orders, order_id) is not None:
                raise OrderAlreadyActive(order_id)

            entry = self.local.remove_deleted(order_id) or deleted[idx]
            recovered = {
                **strip_local_fields(entry),
                "syncedToCloud": False,
                "lastModified": self._clock(),
                "version": order_version(entry) + 1,
            }
            orders.append(recovered)
            self.local.replace_all(orders)

        json_log("info", "sync.recover.done", order_id=short_id(order_id), version=recovered["version"])
        self._schedule_push(recovered)
        return dict(recovered)

    # Best-effort pushes.

    def _chain(self, order_id: str, make_coro) -> asyncio.Task:
        """Spawn central work for one id after the previous push/delete for that id."""
        task = self._spawn(make_coro(self._push_tasks.get(order_id)))
        self._push_tasks[order_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._push_tasks.get(order_id) is done:
                del self._push_tasks[order_id]

        task.add_done_callback(_forget)
        return task

    def _schedule_push(self, order: dict[str, Any]) -> Optional[asyncio.Task]:
        if not self.online:
            return None
        order = dict(order)
        return self._chain(order["id"], lambda prev: self._push(order, after=prev))

    async def _push(self, order: dict[str, Any], after: Optional[asyncio.Task] = None) -> bool:
        order_id = order["id"]
        if after is not None:
            await asyncio.gather(after, return_exceptions=True)
        try:
            outcome = await self.transport.upsert_one(_wire(order))
        except Exception as ex:
            json_log("warn", "sync.push.failed", order_id=short_id(order_id), error=str(ex))
            return False

        pushed_version = order_version(order)
        async with self._lock:
            orders = self.local.list()
            idx = _find_index(orders, order_id)
            if idx is None:
                return True
            current = orders[idx]
            # Edited again while the push was in flight: the newer version stays pending.
            if current.get("syncedToCloud") or order_version(current) != pushed_version:
                return True
            orders[idx] = {**current, "syncedToCloud": True, "lastModified": self._clock()}
            self.local.replace_all(orders)

        json_log("info", "sync.push.done", order_id=short_id(order_id), outcome=outcome, version=pushed_version)
        return True

    async def _remote_delete(self, order_id: str, after: Optional[asyncio.Task] = None) -> bool:
        # The central delete must land after any upsert still in flight for this id.
        if after is not None:
            await asyncio.gather(after, return_exceptions=True)
        try:
            found = await self.transport.delete_one(order_id)
        except Exception as ex:
            json_log("warn", "sync.remote_delete.failed", order_id=short_id(order_id), error=str(ex))
            return False
        async with self._lock:
            self.local.update_deleted(order_id, remoteDeleted=True)
        json_log("info", "sync.remote_delete.done", order_id=short_id(order_id), found=found)
        return True

    # Reconciliation.

    async def full_sync(self) -> SyncResult:
        if not self.online:
            json_log("info", "sync.full.skipped_offline")
            return SyncResult()

        started = time.time()
        uploaded = await self._upload_phase()
        downloaded = await self._download_phase()
        result = SyncResult(uploaded=uploaded, downloaded=downloaded)
        self.last_sync_at = self._clock()
        self.last_result = result
        json_log(
            "info",
            "sync.full.done",
            uploaded=uploaded,
            downloaded=downloaded,
            duration_ms=int((time.time() - started) * 1000),
        )
        return result

    async def _retry_remote_deletes(self) -> None:
        pending = [
            d["id"]
            for d in self.local.list_deleted()
            if isinstance(d, dict) and d.get("id") and d.get("remoteDeleted") is False
        ]
        for order_id in pending:
            await self._remote_delete(order_id)

    async def _upload_phase(self) -> int:
        try:
            await self._retry_remote_deletes()

            pending = [
                dict(o)
                for o in self.local.list()
                if isinstance(o, dict) and o.get("id") and not o.get("syncedToCloud")
            ]
            pushed: dict[str, int] = {}
            for order in pending:
                try:
                    await self.transport.upsert_one(_wire(order))
                except Exception as ex:
                    json_log("warn", "sync.upload.order_failed", order_id=short_id(order["id"]), error=str(ex))
                    continue
                pushed[order["id"]] = order_version(order)

            if not pushed:
                return 0

            # One batched write for the whole phase.
            async with self._lock:
                orders = self.local.list()
                stamp = self._clock()
                applied = 0
                for idx, current in enumerate(orders):
                    if not isinstance(current, dict):
                        continue
                    order_id = current.get("id")
                    if order_id not in pushed or current.get("syncedToCloud"):
                        continue
                    if order_version(current) != pushed[order_id]:
                        continue
                    orders[idx] = {
                        **current,
                        "syncedToCloud": True,
                        "lastModified": stamp,
                        "version": pushed.pop(order_id) + 1,
                    }
                    applied += 1
                if applied:
                    self.local.replace_all(orders)
            return applied
        except Exception as ex:
            json_log("error", "sync.upload.failed", error=str(ex))
            return 0

    async def _download_phase(self) -> int:
        try:
            remote_orders = await self.transport.list_all()
        except Exception as ex:
            json_log("error", "sync.download.failed", error=str(ex))
            return 0

        try:
            async with self._lock:
                orders = self.local.list()
                binned = {
                    d["id"]: d.get("remoteDeleted")
                    for d in self.local.list_deleted()
                    if isinstance(d, dict) and d.get("id")
                }
                index: dict[str, int] = {}
                for idx, o in enumerate(orders):
                    if isinstance(o, dict) and o.get("id") and o["id"] not in index:
                        index[o["id"]] = idx

                stamp = self._clock()
                added = 0
                updated = 0
                for remote in remote_orders:
                    if not isinstance(remote, dict) or not remote.get("id"):
                        continue
                    order_id = remote["id"]
                    # Deleted here: never re-import. A central copy that outlived a
                    # confirmed delete (late upsert) is queued for deletion again.
                    if order_id in binned and order_id not in index:
                        if binned[order_id] is True:
                            self.local.update_deleted(order_id, remoteDeleted=False)
                            json_log("warn", "sync.download.redelete", order_id=short_id(order_id))
                        continue
                    pos = index.get(order_id)
                    resolution = resolve(orders[pos] if pos is not None else None, remote, now=stamp)
                    if not resolution.remote_wins:
                        continue
                    if pos is None:
                        orders.append(resolution.order)
                        index[order_id] = len(orders) - 1
                        added += 1
                    else:
                        orders[pos] = resolution.order
                        updated += 1

                if added or updated:
                    self.local.replace_all(orders)
                    json_log("info", "sync.download.applied", added=added, updated=updated)
                return added + updated
        except Exception as ex:
            json_log("error", "sync.download.failed", error=str(ex))
            return 0

    # Reads and maintenance.

    async def _check_and_repair(self) -> tuple[list[dict[str, Any]], IntegrityReport]:
        async with self._lock:
            clean, report = check_integrity(self.local.list())
            if report.fixed:
                self.local.replace_all(clean)
        return clean, report

    async def list_with_integrity_check(self) -> list[dict[str, Any]]:
        if self.online:
            try:
                await self.full_sync()
            except Exception as ex:
                json_log("error", "sync.list.sync_failed", error=str(ex))
        clean, _ = await self._check_and_repair()
        return clean

    async def run_integrity_check(self) -> IntegrityReport:
        _, report = await self._check_and_repair()
        return report

    def list_deleted(self) -> list[dict[str, Any]]:
        return self.local.list_deleted()

    def sync_status(self) -> dict[str, Any]:
        orders = [o for o in self.local.list() if isinstance(o, dict)]
        return {
            "online": self.online,
            "total": len(orders),
            "pending": sum(1 for o in orders if not o.get("syncedToCloud")),
            "deleted": len(self.local.list_deleted()),
            "last_sync_at": self.last_sync_at,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }

    async def _set_all_synced(self, synced: bool) -> int:
        async with self._lock:
            orders = self.local.list()
            flagged = [{**o, "syncedToCloud": synced} if isinstance(o, dict) else o for o in orders]
            self.local.replace_all(flagged)
        return len(orders)

    async def reset_sync_status(self) -> int:
        """Mark every local order unsynced so the next pass pushes all of them."""
        count = await self._set_all_synced(False)
        json_log("warn", "sync.reset_status", count=count)
        return count

    async def mark_all_synced(self) -> int:
        count = await self._set_all_synced(True)
        json_log("warn", "sync.mark_all_synced", count=count)
        return count
