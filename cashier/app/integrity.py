from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .jsonlog import json_log


@dataclass(frozen=True)
class IntegrityReport:
    duplicates: int = 0
    corrupted: int = 0
    fixed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"duplicates": self.duplicates, "corrupted": self.corrupted, "fixed": self.fixed}


def is_valid_order(order: Any) -> bool:
    if not isinstance(order, dict):
        return False
    order_id = order.get("id")
    if not isinstance(order_id, str) or not order_id.strip():
        return False
    if not isinstance(order.get("items"), list):
        return False
    total = order.get("total")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return False
    return isinstance(order.get("timestamp"), str)


def check_integrity(orders: list[Any]) -> tuple[list[dict[str, Any]], IntegrityReport]:
    """Drop malformed records and later duplicates of an id; first valid occurrence wins."""
    seen: set[str] = set()
    clean: list[dict[str, Any]] = []
    duplicates = 0
    corrupted = 0
    for order in orders:
        if not is_valid_order(order):
            corrupted += 1
            continue
        if order["id"] in seen:
            duplicates += 1
            json_log("warn", "integrity.duplicate_id", order_id=order["id"])
            continue
        seen.add(order["id"])
        clean.append(order)

    fixed = bool(duplicates or corrupted)
    if fixed:
        json_log("warn", "integrity.repaired", duplicates=duplicates, corrupted=corrupted, kept=len(clean))
    return clean, IntegrityReport(duplicates=duplicates, corrupted=corrupted, fixed=fixed)
