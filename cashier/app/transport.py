"""
Async boundary between the sync engine and the central store.

`InProcessTransport` drives a `RemoteRecordStore` directly; `HttpTransport`
talks to the central API in `routers/orders.py`. Both do their blocking I/O in
a worker thread and raise `RemoteUnavailable` when the store cannot be reached.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
from typing import Any, Optional, Protocol
from urllib.parse import quote

from .errors import RemoteUnavailable
from .orders import strip_local_fields
from .remote_store import RemoteRecordStore


class RemoteTransport(Protocol):
    async def list_all(self) -> list[dict[str, Any]]: ...

    async def upsert_one(self, order: dict[str, Any]) -> str: ...

    async def delete_one(self, order_id: str) -> bool: ...


class InProcessTransport:
    def __init__(self, store: RemoteRecordStore):
        self.store = store

    async def list_all(self) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self.store.list)
        except Exception as ex:
            raise RemoteUnavailable(str(ex)) from ex

    async def upsert_one(self, order: dict[str, Any]) -> str:
        try:
            outcome = await asyncio.to_thread(self.store.upsert, strip_local_fields(order))
        except Exception as ex:
            raise RemoteUnavailable(str(ex)) from ex
        return outcome.value

    async def delete_one(self, order_id: str) -> bool:
        try:
            return await asyncio.to_thread(self.store.delete, order_id)
        except Exception as ex:
            raise RemoteUnavailable(str(ex)) from ex

    async def aclose(self) -> None:
        return None


def _order_path(order_id: str) -> str:
    return f"/orders/{quote(str(order_id), safe='')}"


class HttpTransport:
    def __init__(self, base_url: str, *, sync_key: str = "", timeout_s: float = 10.0):
        self.base_url = (base_url or "").rstrip("/")
        self.sync_key = sync_key
        self.timeout_s = timeout_s

    def _http_json(self, method: str, path: str, payload: Optional[dict] = None) -> tuple[int, dict]:
        data = json.dumps(payload, default=str).encode("utf-8") if payload is not None else None
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.sync_key:
            headers["X-Sync-Key"] = self.sync_key
        req = urllib.request.Request(self.base_url + path, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                status = resp.status
                body = resp.read().decode("utf-8") if resp else ""
        except urllib.error.HTTPError as ex:
            status = ex.code
            body = ex.read().decode("utf-8", errors="replace")
        except (urllib.error.URLError, OSError) as ex:
            raise RemoteUnavailable(f"{method} {path}: {ex}") from ex

        if status >= 400 and status != 404:
            raise RemoteUnavailable(f"http {status}: {body[:500]}".strip())
        if not body:
            return status, {}
        try:
            parsed = json.loads(body)
        except ValueError as ex:
            raise RemoteUnavailable(f"invalid json from central store: {ex}") from ex
        return status, parsed if isinstance(parsed, dict) else {}

    async def _call(self, method: str, path: str, payload: Optional[dict] = None) -> tuple[int, dict]:
        return await asyncio.to_thread(self._http_json, method, path, payload)

    async def list_all(self) -> list[dict[str, Any]]:
        status, body = await self._call("GET", "/orders")
        orders = body.get("orders")
        if status == 404 or not isinstance(orders, list):
            raise RemoteUnavailable("central store returned no order list")
        return orders

    async def upsert_one(self, order: dict[str, Any]) -> str:
        payload = strip_local_fields(order)
        status, body = await self._call("PUT", _order_path(payload["id"]), payload)
        if status == 404:
            raise RemoteUnavailable("central store has no order endpoint")
        return str(body.get("status") or "")

    async def delete_one(self, order_id: str) -> bool:
        status, _ = await self._call("DELETE", _order_path(order_id))
        return status != 404

    async def aclose(self) -> None:
        return None
