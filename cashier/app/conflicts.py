"""
Download-side conflict resolution.

Given the local and central copies of one order, decide which survives the
reconciliation pass. Version numbers decide first; an unsynced local record
also loses to a central copy whose modification time is strictly newer (this
covers records written before versions existed).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional

from .orders import now_iso, order_version, parse_ts

KEEP_LOCAL = "keep_local"
KEEP_REMOTE = "keep_remote"


@dataclass(frozen=True)
class Resolution:
    action: Literal["keep_local", "keep_remote"]
    # Merged record to store locally; None when the local copy is kept.
    order: Optional[dict[str, Any]] = None

    @property
    def remote_wins(self) -> bool:
        return self.action == KEEP_REMOTE


def _modified_at(order: dict[str, Any]):
    return parse_ts(order.get("lastModified") or order.get("timestamp"))


def _remote_is_newer(local: dict[str, Any], remote: dict[str, Any]) -> bool:
    remote_ts = _modified_at(remote)
    local_ts = _modified_at(local)
    if remote_ts is None or local_ts is None:
        return False
    return remote_ts > local_ts


def resolve(local: Optional[dict[str, Any]], remote: dict[str, Any], *, now: Optional[str] = None) -> Resolution:
    stamp = now or now_iso()

    if not local:
        merged = {
            **remote,
            "syncedToCloud": True,
            "lastModified": stamp,
            "version": order_version(remote) or 1,
        }
        return Resolution(KEEP_REMOTE, merged)

    remote_version = order_version(remote)
    local_version = order_version(local)

    # Known limitation: an unsynced local edit racing a newer central write from
    # another device is discarded here (last writer wins).
    if remote_version > local_version or (not local.get("syncedToCloud") and _remote_is_newer(local, remote)):
        merged = {
            **remote,
            "syncedToCloud": True,
            "lastModified": stamp,
            "version": max(remote_version, local_version) + 1,
        }
        return Resolution(KEEP_REMOTE, merged)

    return Resolution(KEEP_LOCAL)
