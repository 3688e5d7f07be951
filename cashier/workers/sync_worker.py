#!/usr/bin/env python3
"""
Device sync worker.

Keeps a device's order log reconciled with the central store:
- one pass at startup
- one pass every `interval_minutes` while online
- one immediate pass whenever connectivity comes back

Passes may overlap (timer + reconnect + manual); the engine's per-record
version checks make that safe, so there is no queueing here.

Run standalone against a device database:
  python -m cashier.workers.sync_worker --db ./cashier-local.sqlite --data-dir ./data
  python -m cashier.workers.sync_worker --remote-url http://central:8000 --once
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from ..app.config import settings
from ..app.connectivity import Connectivity
from ..app.jsonlog import json_log
from ..app.local_store import LocalRecordStore, SqliteKeyValueStore
from ..app.remote_store import RemoteRecordStore
from ..app.sync_engine import SyncEngine
from ..app.transport import HttpTransport, InProcessTransport

WORKER_NAME = "order-sync-worker"


class PeriodicSync:
    def __init__(self, engine: SyncEngine, connectivity: Optional[Connectivity] = None, interval_minutes: float = 5):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.engine = engine
        self.connectivity = connectivity if connectivity is not None else engine.connectivity
        self.interval_s = float(interval_minutes) * 60.0
        self.passes = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._triggered: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run())
        self.connectivity.add_reconnect_listener(self._on_reconnect)
        json_log("info", "worker.started", worker=WORKER_NAME, interval_s=self.interval_s)

    def stop(self) -> None:
        self.connectivity.remove_reconnect_listener(self._on_reconnect)
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
        for task in list(self._triggered):
            task.cancel()
        json_log("info", "worker.stopped", worker=WORKER_NAME, passes=self.passes)

    def _on_reconnect(self) -> None:
        json_log("info", "worker.reconnect_sync", worker=WORKER_NAME)
        task = asyncio.get_running_loop().create_task(self._sync_once("reconnect"))
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)

    async def _sync_once(self, trigger: str) -> None:
        try:
            result = await self.engine.full_sync()
        except Exception as ex:
            json_log("error", "worker.sync_failed", worker=WORKER_NAME, trigger=trigger, error=str(ex))
            return
        self.passes += 1
        json_log("info", "worker.sync_done", worker=WORKER_NAME, trigger=trigger, **result.to_dict())

    async def _run(self) -> None:
        await self._sync_once("startup")
        while True:
            await asyncio.sleep(self.interval_s)
            if self.connectivity.online:
                await self._sync_once("timer")

    async def wait_idle(self) -> None:
        """Wait for reconnect-triggered passes started so far."""
        while self._triggered:
            await asyncio.gather(*list(self._triggered), return_exceptions=True)


def build_engine(db_path: str, data_dir: str = "", remote_url: str = "", sync_key: str = "") -> SyncEngine:
    local = LocalRecordStore(SqliteKeyValueStore(db_path))
    if remote_url:
        transport = HttpTransport(remote_url, sync_key=sync_key, timeout_s=settings.http_timeout_s)
    else:
        transport = InProcessTransport(RemoteRecordStore(data_dir or settings.data_dir))
    return SyncEngine(local, transport, Connectivity(online=True))


async def _amain(args) -> int:
    engine = build_engine(args.db, data_dir=args.data_dir, remote_url=args.remote_url, sync_key=args.sync_key)
    try:
        if args.once:
            result = await engine.full_sync()
            print(f"uploaded={result.uploaded} downloaded={result.downloaded}")
            return 0
        periodic = PeriodicSync(engine, interval_minutes=args.interval_minutes)
        periodic.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            periodic.stop()
    finally:
        await engine.flush()
        await engine.transport.aclose()


def main():
    parser = argparse.ArgumentParser(description="Reconcile a device order log with the central store.")
    parser.add_argument("--db", default=settings.local_db_path, help="Device SQLite path (CASHIER_LOCAL_DB)")
    parser.add_argument("--data-dir", default=settings.data_dir, help="Central store directory for in-process sync (CASHIER_DATA_DIR)")
    parser.add_argument("--remote-url", default=settings.remote_url, help="Central API base URL (CASHIER_REMOTE_URL); overrides --data-dir")
    parser.add_argument("--sync-key", default=settings.sync_key, help="Shared key for the central API (CASHIER_SYNC_KEY)")
    parser.add_argument("--interval-minutes", type=float, default=settings.sync_interval_minutes)
    parser.add_argument("--once", action="store_true", help="Run a single reconciliation pass and exit")
    args = parser.parse_args()
    try:
        raise SystemExit(asyncio.run(_amain(args)))
    except KeyboardInterrupt:
        json_log("info", "worker.interrupted", worker=WORKER_NAME)


if __name__ == "__main__":
    main()
