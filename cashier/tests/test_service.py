import pytest

from cashier.app.config import Settings
from cashier.app.service import CashierService, Result
from cashier.app.transport import InProcessTransport


@pytest.fixture
def service(engine):
    return CashierService(engine)


def test_result_to_dict_omits_empty_fields():
    assert Result.ok().to_dict() == {"success": True}
    assert Result.ok({"n": 1}).to_dict() == {"success": True, "data": {"n": 1}}
    assert Result.fail("not_found", "gone").to_dict() == {"success": False, "error": "not_found", "message": "gone"}


@pytest.mark.asyncio
async def test_create_and_list(service, order_data):
    created = await service.create_order(order_data())
    assert created.success is True
    await service.engine.flush()

    listed = await service.list_orders()
    assert listed.success is True
    assert [o["id"] for o in listed.data] == [created.data["id"]]


@pytest.mark.asyncio
async def test_invalid_input_is_reported_not_raised(service, order_data):
    res = await service.create_order(order_data(paymentMethod="card"))
    assert res.success is False
    assert res.error == "invalid"

    res = await service.create_order({"total": 3})
    assert res.error == "invalid"


@pytest.mark.asyncio
async def test_expected_failures_map_to_codes(service, order_data, make_stored):
    assert (await service.edit_order(make_stored("missing"))).error == "not_found"
    assert (await service.remove_order("missing")).error == "not_found"
    assert (await service.recover_order("missing")).error == "not_found"

    service.engine.connectivity.set_online(False)
    created = (await service.create_order(order_data())).data
    await service.edit_order({**created, "total": 1.0})
    stale = await service.edit_order({**created, "version": 0})
    assert stale.success is False
    assert stale.error == "conflict"
    assert "Conflict: newer version exists" in stale.message


@pytest.mark.asyncio
async def test_force_sync_offline_is_a_failure(service):
    service.engine.connectivity.set_online(False)
    res = await service.force_sync_now()
    assert res.success is False
    assert res.error == "offline"
    assert res.data == {"uploaded": 0, "downloaded": 0}


@pytest.mark.asyncio
async def test_force_sync_online_reports_counts(service, order_data):
    service.engine.connectivity.set_online(False)
    await service.create_order(order_data())
    service.engine.connectivity.set_online(True)

    res = await service.force_sync_now()
    assert res.success is True
    assert res.data == {"uploaded": 1, "downloaded": 0}

    status = service.sync_status().data
    assert status["pending"] == 0
    assert status["last_result"] == {"uploaded": 1, "downloaded": 0}


@pytest.mark.asyncio
async def test_integrity_check_reports_repairs(service, local, make_stored):
    local.replace_all([make_stored("a"), make_stored("a"), {"id": 5}])
    res = await service.run_integrity_check()
    assert res.data == {"duplicates": 1, "corrupted": 1, "fixed": True}
    assert len(local.list()) == 1


@pytest.mark.asyncio
async def test_delete_and_recover_round_trip(service, order_data):
    service.engine.connectivity.set_online(False)
    created = (await service.create_order(order_data())).data

    assert (await service.remove_order(created["id"])).success is True
    assert [o["id"] for o in service.list_deleted_orders().data] == [created["id"]]

    recovered = await service.recover_order(created["id"])
    assert recovered.success is True
    assert recovered.data["version"] == 2


@pytest.mark.asyncio
async def test_bulk_sync_flags(service, local, make_stored):
    local.replace_all([make_stored("a"), make_stored("b"), make_stored("c")])
    assert (await service.reset_sync_status()).data == {"count": 3}
    assert service.sync_status().data["pending"] == 3
    assert (await service.mark_all_synced()).data == {"count": 3}


@pytest.mark.asyncio
async def test_periodic_sync_rejects_bad_interval_and_restarts(service):
    assert service.start_periodic_sync(0).error == "invalid"
    assert service.start_periodic_sync(-1).error == "invalid"

    first = service.start_periodic_sync(5)
    assert first.success is True
    periodic = service._periodic
    service.start_periodic_sync(10)
    assert service._periodic is not periodic
    assert periodic.running is False

    assert service.stop_periodic_sync().data == {"stopped": True}
    assert service.stop_periodic_sync().data == {"stopped": False}
    await service.aclose()


def test_periodic_sync_without_running_loop_is_reported(service):
    res = service.start_periodic_sync(5)
    assert res.success is False
    assert res.error == "no_event_loop"
    assert service._periodic is None
    assert service.stop_periodic_sync().data == {"stopped": False}


@pytest.mark.asyncio
async def test_from_settings_builds_local_and_in_process_stores(tmp_path, monkeypatch, order_data):
    monkeypatch.setenv("CASHIER_DATA_DIR", str(tmp_path / "central"))
    monkeypatch.setenv("CASHIER_LOCAL_DB", str(tmp_path / "device.sqlite"))
    monkeypatch.delenv("CASHIER_REMOTE_URL", raising=False)

    service = CashierService.from_settings(Settings())
    assert isinstance(service.engine.transport, InProcessTransport)

    created = await service.create_order(order_data())
    await service.engine.flush()
    assert service.engine.transport.store.get(created.data["id"]) is not None
    await service.aclose()
