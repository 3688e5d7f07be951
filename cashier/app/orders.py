from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .validation import OrderId, PaymentMethod

# Device-only annotations. Never sent to the central store.
LOCAL_ONLY_FIELDS = ("syncedToCloud", "lastModified", "deletedAt", "remoteDeleted")


class OrderIn(BaseModel):
    """Checkout payload: everything but the identity/sync metadata."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    items: list[dict[str, Any]]
    total: float
    amount_paid: float = Field(0, alias="amountPaid")
    change: float = 0
    payment_method: PaymentMethod = Field("cash", alias="paymentMethod")
    timestamp: Optional[str] = None
    customer_name: Optional[str] = Field(None, alias="customerName")

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Order(OrderIn):
    id: OrderId
    timestamp: str
    version: Optional[int] = Field(None, ge=0)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_order_id() -> str:
    return str(uuid.uuid4())


def parse_ts(value) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def strip_local_fields(order: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in order.items() if k not in LOCAL_ONLY_FIELDS}


def order_version(order: Optional[dict[str, Any]]) -> int:
    if not order:
        return 0
    v = order.get("version")
    if isinstance(v, bool) or not isinstance(v, int):
        return 0
    return v


def short_id(order_id) -> str:
    return str(order_id or "")[:8]
