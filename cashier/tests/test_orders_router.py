import json

import pytest
from fastapi.testclient import TestClient

from cashier.app.config import settings
from cashier.app.deps import get_store
from cashier.app.main import app


@pytest.fixture
def client(remote):
    app.dependency_overrides[get_store] = lambda: remote
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health_reports_store(client, remote):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["data_dir"] == remote.data_dir
    assert res.headers["X-Request-Id"]


def test_request_id_is_echoed(client):
    res = client.get("/orders", headers={"X-Request-Id": "abc123"})
    assert res.headers["X-Request-Id"] == "abc123"


def test_put_inserts_and_get_returns_order(client, make_stored):
    res = client.put("/orders/a", json=make_stored("a"))
    assert res.status_code == 200
    assert res.json() == {"status": "inserted"}

    assert client.put("/orders/a", json=make_stored("a")).json() == {"status": "skipped"}
    assert client.put("/orders/a", json=make_stored("a", version=2)).json() == {"status": "updated"}

    got = client.get("/orders/a").json()["order"]
    assert got["version"] == 2
    assert "syncedToCloud" not in got
    assert [o["id"] for o in client.get("/orders").json()["orders"]] == ["a"]


def test_unknown_order_is_404(client):
    assert client.get("/orders/nope").status_code == 404
    assert client.delete("/orders/nope").status_code == 404


def test_put_rejects_mismatched_id(client, make_stored):
    res = client.put("/orders/a", json=make_stored("b"))
    assert res.status_code == 400
    assert res.json()["detail"] == "order id mismatch"


def test_put_rejects_invalid_body(client, make_stored):
    res = client.put("/orders/a", json=make_stored("a", paymentMethod="card"))
    assert res.status_code == 422
    assert res.json()["detail"] == "validation failed"


def test_explicit_update_conflict_and_missing(client, make_stored):
    client.put("/orders/a", json=make_stored("a", version=3))

    stale = client.post("/orders/a/update", json=make_stored("a", version=2))
    assert stale.status_code == 409
    assert "Conflict: newer version exists" in stale.json()["detail"]
    assert stale.json()["code"] == "conflict"

    missing = client.post("/orders/zzz/update", json=make_stored("zzz", version=1))
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"

    ok = client.post("/orders/a/update", json=make_stored("a", version=4, total=7.5))
    assert ok.status_code == 200
    assert ok.json()["order"]["total"] == 7.5


def test_delete(client, make_stored):
    client.put("/orders/a", json=make_stored("a"))
    assert client.delete("/orders/a").json() == {"ok": True}
    assert client.get("/orders/a").status_code == 404


def test_order_requests_are_logged_with_order_id(client, capsys, make_stored):
    client.put("/orders/abcdef123456", json=make_stored("abcdef123456"), headers={"X-Sync-Key": "k"})
    records = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line.startswith("{")]
    logged = [r for r in records if r.get("event") == "http.request"]
    assert logged[-1]["order_id"] == "abcdef12"
    assert logged[-1]["keyed"] is True
    assert logged[-1]["status_code"] == 200
    assert "k" not in {str(v) for v in logged[-1].values()}


def test_sync_key_is_enforced_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "sync_key", "s3cret")
    assert client.get("/orders").status_code == 403
    assert client.get("/orders", headers={"X-Sync-Key": "wrong"}).status_code == 403
    assert client.get("/orders", headers={"X-Sync-Key": "s3cret"}).status_code == 200
    # Health stays open for probes.
    assert client.get("/health").status_code == 200
