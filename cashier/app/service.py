"""
UI-facing cashier API.

Every call returns a `Result`; expected failures (unknown order, stale edit,
bad input, offline) come back as `success=False` with an error code instead of
raising across this boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .connectivity import Connectivity
from .errors import CashierError
from .jsonlog import json_log
from .local_store import LocalRecordStore, SessionMirror, SqliteKeyValueStore
from .remote_store import RemoteRecordStore
from .sync_engine import SyncEngine
from .transport import HttpTransport, InProcessTransport
from ..workers.sync_worker import PeriodicSync


@dataclass
class Result:
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None) -> "Result":
        return cls(success=False, error=error, message=message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = self.data
        if self.error:
            out["error"] = self.error
        if self.message:
            out["message"] = self.message
        return out


class CashierService:
    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self._periodic = None

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None, connectivity: Optional[Connectivity] = None) -> "CashierService":
        cfg = cfg or default_settings
        local = LocalRecordStore(SqliteKeyValueStore(cfg.local_db_path), mirror=SessionMirror())
        if cfg.remote_url:
            transport = HttpTransport(cfg.remote_url, sync_key=cfg.sync_key, timeout_s=cfg.http_timeout_s)
        else:
            transport = InProcessTransport(RemoteRecordStore(cfg.data_dir, mirror=SessionMirror()))
        return cls(SyncEngine(local, transport, connectivity))

    async def _call(self, op: str, coro) -> Result:
        try:
            return Result.ok(await coro)
        except ValidationError as ex:
            json_log("warn", "service.invalid_input", op=op, errors=ex.errors(include_url=False))
            return Result.fail("invalid", "validation failed")
        except CashierError as ex:
            return Result.fail(ex.code, str(ex))

    async def list_orders(self) -> Result:
        return await self._call("list_orders", self.engine.list_with_integrity_check())

    async def create_order(self, data) -> Result:
        return await self._call("create_order", self.engine.create(data))

    async def edit_order(self, order) -> Result:
        return await self._call("edit_order", self.engine.update(order))

    async def remove_order(self, order_id: str) -> Result:
        return await self._call("remove_order", self.engine.delete(order_id))

    async def recover_order(self, order_id: str) -> Result:
        return await self._call("recover_order", self.engine.recover(order_id))

    async def force_sync_now(self) -> Result:
        if not self.engine.online:
            return Result(success=False, data={"uploaded": 0, "downloaded": 0}, error="offline")
        result = await self.engine.full_sync()
        return Result.ok(result.to_dict())

    async def run_integrity_check(self) -> Result:
        report = await self.engine.run_integrity_check()
        return Result.ok(report.to_dict())

    def sync_status(self) -> Result:
        return Result.ok(self.engine.sync_status())

    def list_deleted_orders(self) -> Result:
        return Result.ok(self.engine.list_deleted())

    async def reset_sync_status(self) -> Result:
        return Result.ok({"count": await self.engine.reset_sync_status()})

    async def mark_all_synced(self) -> Result:
        return Result.ok({"count": await self.engine.mark_all_synced()})

    def start_periodic_sync(self, interval_minutes: float = 5) -> Result:
        if interval_minutes is None or interval_minutes <= 0:
            return Result.fail("invalid", "interval must be positive")
        if self._periodic is not None:
            self._periodic.stop()
            self._periodic = None
        periodic = PeriodicSync(self.engine, self.engine.connectivity, interval_minutes=interval_minutes)
        try:
            periodic.start()
        except RuntimeError as ex:
            # start() needs a running event loop to own its tasks.
            json_log("error", "service.periodic_sync.start_failed", error=str(ex))
            return Result.fail("no_event_loop", "periodic sync must be started from a running event loop")
        self._periodic = periodic
        return Result.ok({"interval_minutes": interval_minutes})

    def stop_periodic_sync(self) -> Result:
        if self._periodic is None:
            return Result.ok({"stopped": False})
        self._periodic.stop()
        self._periodic = None
        return Result.ok({"stopped": True})

    async def aclose(self) -> None:
        self.stop_periodic_sync()
        await self.engine.flush()
        close = getattr(self.engine.transport, "aclose", None)
        if close is not None:
            await close()
