import asyncio
import time

import pytest

from kumo_local.api import KumoLocalAPI
from kumo_local.const import KUMO_LOGIN_URL
from kumo_local.database import KumoStateStore
from kumo_local.registry import KumoDevice

from conftest import FakeHttp, error, zone_entry


@pytest.mark.asyncio
async def test_initialize_logs_in(http):
    api = KumoLocalAPI("user", "pw", http=http)

    assert await api.initialize() is True
    assert api.session.token == "T1"
    assert "S1" in api.registry


@pytest.mark.asyncio
async def test_initialize_restores_state(tmp_path, http):
    db_file = str(tmp_path / "kumo.db")
    store = KumoStateStore(db_file)
    store.save_devices([KumoDevice("S9", "Attic", zone_entry("Attic", address="10.0.0.9"))])
    seeded = KumoLocalAPI("user", "pw", http=http).session
    seeded.restore("STORED", time.time(), time.time(), False)
    store.save_session(seeded)

    api = KumoLocalAPI("user", "pw", db_path=db_file, http=http)

    assert await api.initialize() is True
    # Stored token is still fresh, so no login
    assert http.count(KUMO_LOGIN_URL) == 0
    assert api.session.token == "STORED"
    assert api.session.temperature_unit == "F"
    assert api.registry.get("S9").label == "Attic"


@pytest.mark.asyncio
async def test_initialize_without_cloud_keeps_cached_devices(tmp_path):
    db_file = str(tmp_path / "kumo.db")
    KumoStateStore(db_file).save_devices([KumoDevice("S1", "Living Room", zone_entry("Living Room"))])
    http = FakeHttp()
    http.add(KUMO_LOGIN_URL, error(503, "Service Unavailable"))

    api = KumoLocalAPI("user", "pw", db_path=db_file, http=http)

    assert await api.initialize() is False
    assert "S1" in api.registry


@pytest.mark.asyncio
async def test_address_overrides_from_config(http):
    api = KumoLocalAPI("user", "pw", http=http, address_overrides={"S1": "192.168.1.50"})
    await api.initialize()

    assert api.registry.resolve("S1").address == "192.168.1.50"


@pytest.mark.asyncio
async def test_set_override_address_is_persisted(tmp_path, http):
    db_file = str(tmp_path / "kumo.db")
    api = KumoLocalAPI("user", "pw", db_path=db_file, http=http)
    await api.initialize()

    api.set_override_address("S1", "192.168.1.77")

    stored = {d.serial: d for d in KumoStateStore(db_file).load_devices()}
    assert stored["S1"].override_address == "192.168.1.77"


@pytest.mark.asyncio
async def test_background_refresh_start_stop(http):
    api = KumoLocalAPI("user", "pw", http=http)
    await api.initialize()
    api.refresh_interval = 0

    api.start_background_refresh()
    await asyncio.sleep(0.01)
    assert api.status()["background_refresh"] is True

    await api.stop_background_refresh()
    assert api.status()["background_refresh"] is False


@pytest.mark.asyncio
async def test_cleanup_closes_http(http):
    api = KumoLocalAPI("user", "pw", http=http)
    await api.initialize()
    api.start_background_refresh()

    await api.cleanup()

    assert http.closed is True
    assert api._refresh_task is None


@pytest.mark.asyncio
async def test_status(http):
    api = KumoLocalAPI("user", "pw", http=http)
    await api.initialize()

    status = api.status()
    assert status["devices"] == 1
    assert status["session"]["authenticated"] is True
    assert status["session"]["temperature_unit"] == "C"


@pytest.mark.asyncio
async def test_override_for_undiscovered_device_survives_restart(tmp_path, http):
    db_file = str(tmp_path / "kumo.db")
    api = KumoLocalAPI("user", "pw", db_path=db_file, http=http)
    await api.initialize()
    api.set_override_address("S7", "192.168.1.70")

    restarted = KumoLocalAPI("user", "pw", db_path=db_file, http=http)
    await restarted.initialize()
    restarted.registry.parse_tree([{"zoneTable": {"S7": zone_entry("Garage", address="10.0.0.70")}}])

    assert restarted.registry.resolve("S7").address == "192.168.1.70"


@pytest.mark.asyncio
async def test_command_line_override_beats_stored_one(tmp_path, http):
    db_file = str(tmp_path / "kumo.db")
    KumoStateStore(db_file).save_override("S1", "192.168.1.50")

    api = KumoLocalAPI("user", "pw", db_path=db_file, http=http, address_overrides={"S1": "192.168.1.99"})
    await api.initialize()

    assert api.registry.resolve("S1").address == "192.168.1.99"
