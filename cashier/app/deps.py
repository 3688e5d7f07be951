import hmac
from typing import Optional

from fastapi import Header, HTTPException

from .config import settings
from .remote_store import RemoteRecordStore

_store: Optional[RemoteRecordStore] = None


def get_store() -> RemoteRecordStore:
    # One store per process: its lock and in-memory fallback must be shared by all requests.
    global _store
    if _store is None:
        _store = RemoteRecordStore(settings.data_dir)
    return _store


def require_sync_key(x_sync_key: Optional[str] = Header(None)) -> None:
    expected = settings.sync_key
    if not expected:
        return
    presented = (x_sync_key or "").strip()
    if not presented or not hmac.compare_digest(presented, expected):
        raise HTTPException(status_code=403, detail="forbidden")
