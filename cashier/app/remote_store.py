"""
Central order store.

One JSON document (`orders.json`) under the configured data directory, plus
`orders.backup.json` refreshed after every successful read and before every
write. When the directory cannot be read or written, the store keeps serving
from an in-process mirror for the rest of the process lifetime.

Write rule for upserts: an existing record is only replaced by a strictly
higher version. Records without a version (legacy data) are always replaced.
"""

from __future__ import annotations

import json
import os
import shutil
import threading
from enum import Enum
from typing import Any, Optional

from .errors import OrderNotFound, VersionConflict
from .jsonlog import json_log
from .local_store import SessionMirror
from .orders import short_id, strip_local_fields


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


def _versions_allow_overwrite(incoming: dict[str, Any], existing: dict[str, Any]) -> bool:
    iv = incoming.get("version")
    ev = existing.get("version")
    if not isinstance(iv, int) or not isinstance(ev, int):
        return True
    return iv > ev


class RemoteRecordStore:
    def __init__(self, data_dir: str, mirror: Optional[SessionMirror] = None):
        self.data_dir = os.path.abspath(data_dir)
        self.db_path = os.path.join(self.data_dir, "orders.json")
        self.backup_path = os.path.join(self.data_dir, "orders.backup.json")
        self.mirror = mirror if mirror is not None else SessionMirror()
        # Serializes read-modify-write cycles; the in-process transport calls us from worker threads.
        self._lock = threading.RLock()
        self._storage_stale = False

    def _ensure_initialized(self) -> None:
        try:
            os.makedirs(self.data_dir, exist_ok=True)
        except OSError as ex:
            json_log("error", "remote_store.mkdir_failed", path=self.data_dir, error=str(ex))
            return
        if os.path.exists(self.db_path):
            return
        try:
            with open(self.db_path, "w", encoding="utf-8") as f:
                json.dump([], f)
        except OSError as ex:
            json_log("error", "remote_store.init_failed", path=self.db_path, error=str(ex))

    def _read_file(self) -> list[dict[str, Any]]:
        with open(self.db_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError("orders data is not a list")
        return data

    def _backup(self) -> None:
        if not os.path.exists(self.db_path):
            return
        try:
            shutil.copyfile(self.db_path, self.backup_path)
        except OSError as ex:
            json_log("error", "remote_store.backup_failed", path=self.backup_path, error=str(ex))

    def _restore_from_backup(self) -> bool:
        if not os.path.exists(self.backup_path):
            return False
        try:
            shutil.copyfile(self.backup_path, self.db_path)
        except OSError as ex:
            json_log("error", "remote_store.restore_failed", path=self.backup_path, error=str(ex))
            return False
        json_log("warn", "remote_store.restored_from_backup", path=self.db_path)
        return True

    def _read_with_recovery(self) -> list[dict[str, Any]]:
        if self._storage_stale and self.mirror.populated:
            # Last write never reached disk; the file is older than what we served.
            return self.mirror.get()
        try:
            orders = self._read_file()
        except (OSError, ValueError) as ex:
            # json.JSONDecodeError is a ValueError.
            json_log("error", "remote_store.read_failed", path=self.db_path, error=str(ex))
        else:
            # Only a readable file may overwrite the backup.
            self._backup()
            return orders

        if self._restore_from_backup():
            try:
                return self._read_file()
            except (OSError, ValueError) as ex:
                json_log("error", "remote_store.read_after_restore_failed", path=self.db_path, error=str(ex))
        return self.mirror.get()

    def _write(self, orders: list[dict[str, Any]]) -> bool:
        self.mirror.set(orders)
        try:
            self._backup()
            tmp_path = self.db_path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(orders, f, indent=2, default=str)
            os.replace(tmp_path, self.db_path)
            self._storage_stale = False
            return True
        except OSError as ex:
            self._storage_stale = True
            json_log("error", "remote_store.write_failed", path=self.db_path, count=len(orders), error=str(ex))
            return False

    def list(self) -> list[dict[str, Any]]:
        with self._lock:
            self._ensure_initialized()
            return self._read_with_recovery()

    def get(self, order_id: str) -> Optional[dict[str, Any]]:
        for order in self.list():
            if isinstance(order, dict) and order.get("id") == order_id:
                return order
        return None

    def upsert(self, order: dict[str, Any]) -> UpsertOutcome:
        if not isinstance(order, dict) or not order.get("id"):
            raise ValueError("order must be a dict with an id")
        incoming = strip_local_fields(order)
        with self._lock:
            self._ensure_initialized()
            orders = self._read_with_recovery()
            for idx, existing in enumerate(orders):
                if not isinstance(existing, dict) or existing.get("id") != incoming["id"]:
                    continue
                if not _versions_allow_overwrite(incoming, existing):
                    json_log(
                        "info",
                        "remote_store.upsert.skipped",
                        order_id=incoming["id"],
                        incoming_version=incoming.get("version"),
                        stored_version=existing.get("version"),
                    )
                    return UpsertOutcome.SKIPPED
                orders[idx] = incoming
                self._write(orders)
                json_log("info", "remote_store.upsert.updated", order_id=short_id(incoming["id"]), version=incoming.get("version"))
                return UpsertOutcome.UPDATED

            if incoming.get("version") is None:
                incoming["version"] = 1
            orders.append(incoming)
            self._write(orders)
            json_log("info", "remote_store.upsert.inserted", order_id=short_id(incoming["id"]), version=incoming["version"])
            return UpsertOutcome.INSERTED

    def update(self, order: dict[str, Any]) -> dict[str, Any]:
        """Explicit edit: unlike `upsert`, a stale version is reported to the caller."""
        if not isinstance(order, dict) or not order.get("id"):
            raise ValueError("order must be a dict with an id")
        incoming = strip_local_fields(order)
        with self._lock:
            self._ensure_initialized()
            orders = self._read_with_recovery()
            for idx, existing in enumerate(orders):
                if not isinstance(existing, dict) or existing.get("id") != incoming["id"]:
                    continue
                if not _versions_allow_overwrite(incoming, existing):
                    raise VersionConflict(incoming["id"], incoming.get("version"), existing.get("version"))
                orders[idx] = incoming
                self._write(orders)
                return incoming
        raise OrderNotFound(incoming["id"], where="central store")

    def delete(self, order_id: str) -> bool:
        with self._lock:
            self._ensure_initialized()
            orders = self._read_with_recovery()
            kept = [o for o in orders if not (isinstance(o, dict) and o.get("id") == order_id)]
            if len(kept) == len(orders):
                json_log("info", "remote_store.delete.not_found", order_id=order_id)
                return False
            self._write(kept)
            json_log("info", "remote_store.delete.done", order_id=short_id(order_id))
            return True
