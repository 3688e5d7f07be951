"""
Device-side order storage.

Three JSON-encoded slots live in a small key/value table:
- active orders (authoritative local copy)
- a shadow backup of the active orders
- soft-deleted orders (recovery bin)

Reads never raise: a corrupt active slot falls back to the backup, then to the
session mirror that holds everything written since the process started.
"""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import closing
from typing import Any, Optional, Protocol

from .jsonlog import json_log

ORDERS_KEY = "cashier-orders"
BACKUP_KEY = "cashier-orders-backup"
DELETED_KEY = "cashier-deleted-orders"


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value


class SqliteKeyValueStore:
    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_slots (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL,
                  updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                )
                """
            )

    def _connect(self):
        return sqlite3.connect(self.path, timeout=5)

    def get_item(self, key: str) -> Optional[str]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT value FROM kv_slots WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO kv_slots (key, value, updated_at)
                VALUES (?, ?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                ON CONFLICT(key) DO UPDATE SET
                  value=excluded.value,
                  updated_at=excluded.updated_at
                """,
                (key, value),
            )


class SessionMirror:
    """In-process copy of the last order list handed to a store.

    Lives for the whole process; there is no teardown. `populated` stays False
    until the first write so an untouched mirror never masks real storage.
    """

    def __init__(self):
        self._orders: Optional[list[dict[str, Any]]] = None

    @property
    def populated(self) -> bool:
        return self._orders is not None

    def get(self) -> list[dict[str, Any]]:
        return [dict(o) if isinstance(o, dict) else o for o in (self._orders or [])]

    def set(self, orders: list[dict[str, Any]]) -> None:
        self._orders = [dict(o) if isinstance(o, dict) else o for o in orders]


def _decode_list(raw: Optional[str]) -> Optional[list]:
    if raw is None:
        return None
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("orders data is not a list")
    return data


class LocalRecordStore:
    def __init__(self, kv: KeyValueStore, mirror: Optional[SessionMirror] = None):
        self.kv = kv
        self.mirror = mirror if mirror is not None else SessionMirror()
        # Set when the last write failed: persisted slots are then older than the mirror.
        self._storage_stale = False

    def list(self) -> list[dict[str, Any]]:
        if self._storage_stale and self.mirror.populated:
            return self.mirror.get()
        try:
            orders = _decode_list(self.kv.get_item(ORDERS_KEY))
            if orders is not None:
                return orders
            # Nothing persisted: only the mirror can know about this session's writes.
            return self.mirror.get()
        except Exception as ex:
            json_log("error", "local_store.read_failed", slot=ORDERS_KEY, error=str(ex))

        try:
            orders = _decode_list(self.kv.get_item(BACKUP_KEY))
            if orders is not None:
                json_log("warn", "local_store.recovered_from_backup", count=len(orders))
                return orders
        except Exception as ex:
            json_log("error", "local_store.backup_read_failed", slot=BACKUP_KEY, error=str(ex))

        return self.mirror.get()

    def replace_all(self, orders: list[dict[str, Any]]) -> bool:
        if not isinstance(orders, list):
            raise TypeError("orders must be a list")
        self.mirror.set(orders)
        try:
            current = self.kv.get_item(ORDERS_KEY)
            # Only snapshot readable content; a corrupt active slot must not clobber a good backup.
            if current is not None and self._is_list_json(current):
                self.kv.set_item(BACKUP_KEY, current)
            payload = json.dumps(orders)
            self.kv.set_item(ORDERS_KEY, payload)
            self.kv.set_item(BACKUP_KEY, payload)
            self._storage_stale = False
            return True
        except Exception as ex:
            self._storage_stale = True
            json_log("error", "local_store.write_failed", slot=ORDERS_KEY, count=len(orders), error=str(ex))
            return False

    @staticmethod
    def _is_list_json(raw: str) -> bool:
        try:
            return isinstance(json.loads(raw), list)
        except Exception:
            return False

    # Soft-delete slot.

    def list_deleted(self) -> list[dict[str, Any]]:
        try:
            return _decode_list(self.kv.get_item(DELETED_KEY)) or []
        except Exception as ex:
            json_log("error", "local_store.read_failed", slot=DELETED_KEY, error=str(ex))
            return []

    def _write_deleted(self, deleted: list[dict[str, Any]]) -> bool:
        try:
            self.kv.set_item(DELETED_KEY, json.dumps(deleted))
            return True
        except Exception as ex:
            json_log("error", "local_store.write_failed", slot=DELETED_KEY, count=len(deleted), error=str(ex))
            return False

    def append_deleted(self, order: dict[str, Any]) -> bool:
        deleted = self.list_deleted()
        deleted.append(dict(order))
        return self._write_deleted(deleted)

    def remove_deleted(self, order_id: str) -> Optional[dict[str, Any]]:
        deleted = self.list_deleted()
        for idx, entry in enumerate(deleted):
            if isinstance(entry, dict) and entry.get("id") == order_id:
                removed = deleted.pop(idx)
                self._write_deleted(deleted)
                return removed
        return None

    def update_deleted(self, order_id: str, **fields) -> bool:
        deleted = self.list_deleted()
        changed = False
        for entry in deleted:
            if isinstance(entry, dict) and entry.get("id") == order_id:
                entry.update(fields)
                changed = True
        if not changed:
            return False
        return self._write_deleted(deleted)
