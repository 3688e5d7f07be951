import json
import os

import pytest

from cashier.app.errors import OrderNotFound, VersionConflict
from cashier.app.remote_store import RemoteRecordStore, UpsertOutcome


def _ids(store):
    return [o["id"] for o in store.list()]


def test_list_initializes_empty_file(remote):
    assert remote.list() == []
    assert os.path.exists(remote.db_path)


def test_upsert_inserts_then_updates_only_on_higher_version(remote, make_stored):
    assert remote.upsert(make_stored("a", version=1)) is UpsertOutcome.INSERTED
    assert remote.upsert(make_stored("a", version=1, total=99.0)) is UpsertOutcome.SKIPPED
    assert remote.get("a")["total"] == 2.5

    assert remote.upsert(make_stored("a", version=2, total=3.0)) is UpsertOutcome.UPDATED
    assert remote.get("a")["total"] == 3.0
    assert remote.upsert(make_stored("a", version=1, total=1.0)) is UpsertOutcome.SKIPPED
    assert remote.get("a")["version"] == 2


def test_upsert_strips_device_fields_and_defaults_version(remote, make_stored):
    order = make_stored("a", deletedAt="x", remoteDeleted=False)
    order.pop("version")
    remote.upsert(order)
    stored = remote.get("a")
    assert stored["version"] == 1
    for key in ("syncedToCloud", "lastModified", "deletedAt", "remoteDeleted"):
        assert key not in stored


def test_unversioned_records_are_always_overwritten(remote, make_stored):
    legacy = make_stored("a", total=1.0)
    legacy.pop("version")
    remote.list()
    with open(remote.db_path, "w", encoding="utf-8") as f:
        json.dump([legacy], f)

    assert remote.upsert(make_stored("a", version=1, total=7.0)) is UpsertOutcome.UPDATED
    assert remote.get("a")["total"] == 7.0


def test_upsert_requires_an_id(remote):
    with pytest.raises(ValueError):
        remote.upsert({"total": 1})


def test_corrupt_file_is_restored_from_backup(remote, make_stored):
    remote.upsert(make_stored("a"))
    remote.upsert(make_stored("b"))
    # A successful read refreshes the backup.
    assert _ids(remote) == ["a", "b"]

    with open(remote.db_path, "w", encoding="utf-8") as f:
        f.write("{ truncated")

    assert _ids(remote) == ["a", "b"]
    with open(remote.db_path, "r", encoding="utf-8") as f:
        assert [o["id"] for o in json.load(f)] == ["a", "b"]


def test_non_list_document_is_treated_as_corrupt(tmp_path, make_stored):
    store = RemoteRecordStore(str(tmp_path))
    with open(store.db_path, "w", encoding="utf-8") as f:
        json.dump({"orders": []}, f)
    with open(store.backup_path, "w", encoding="utf-8") as f:
        json.dump([make_stored("a")], f)
    assert _ids(store) == ["a"]


def test_unreadable_file_and_backup_fall_back_to_memory(tmp_path, make_stored):
    store = RemoteRecordStore(str(tmp_path))
    store.upsert(make_stored("a"))
    for path in (store.db_path, store.backup_path):
        with open(path, "w", encoding="utf-8") as f:
            f.write("garbage")
    assert _ids(store) == ["a"]


def test_write_failure_keeps_serving_mirror(tmp_path, make_stored, monkeypatch):
    store = RemoteRecordStore(str(tmp_path))
    store.upsert(make_stored("a"))

    def _fail(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("cashier.app.remote_store.os.replace", _fail)
    assert store.upsert(make_stored("b")) is UpsertOutcome.INSERTED
    assert _ids(store) == ["a", "b"]


def test_update_reports_conflict_and_missing(remote, make_stored):
    remote.upsert(make_stored("a", version=3))

    with pytest.raises(VersionConflict) as exc:
        remote.update(make_stored("a", version=2))
    assert "Conflict: newer version exists" in str(exc.value)

    with pytest.raises(OrderNotFound):
        remote.update(make_stored("zzz", version=5))

    updated = remote.update(make_stored("a", version=4, total=9.0))
    assert updated["version"] == 4
    assert remote.get("a")["total"] == 9.0


def test_delete_removes_without_history(remote, make_stored):
    remote.upsert(make_stored("a"))
    remote.upsert(make_stored("b"))
    assert remote.delete("a") is True
    assert remote.delete("a") is False
    assert _ids(remote) == ["b"]
    assert remote.get("a") is None
