from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from ..deps import get_store, require_sync_key
from ..orders import Order
from ..remote_store import RemoteRecordStore

router = APIRouter(prefix="/orders", tags=["orders"], dependencies=[Depends(require_sync_key)])


def _body_for(order_id: str, data: Order) -> dict[str, Any]:
    if data.id != order_id:
        raise HTTPException(status_code=400, detail="order id mismatch")
    return data.to_record()


@router.get("")
async def list_orders(store: RemoteRecordStore = Depends(get_store)):
    orders = await run_in_threadpool(store.list)
    return {"orders": orders}


@router.get("/{order_id}")
async def get_order(order_id: str, store: RemoteRecordStore = Depends(get_store)):
    order = await run_in_threadpool(store.get, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="order not found")
    return {"order": order}


@router.put("/{order_id}")
async def upsert_order(order_id: str, data: Order, store: RemoteRecordStore = Depends(get_store)):
    outcome = await run_in_threadpool(store.upsert, _body_for(order_id, data))
    return {"status": outcome.value}


@router.post("/{order_id}/update")
async def update_order(order_id: str, data: Order, store: RemoteRecordStore = Depends(get_store)):
    # OrderNotFound / VersionConflict map to 404 / 409 in the app's error handler.
    order = await run_in_threadpool(store.update, _body_for(order_id, data))
    return {"order": order}


@router.delete("/{order_id}")
async def delete_order(order_id: str, store: RemoteRecordStore = Depends(get_store)):
    found = await run_in_threadpool(store.delete, order_id)
    if not found:
        raise HTTPException(status_code=404, detail="order not found")
    return {"ok": True}
