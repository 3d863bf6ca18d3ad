import json

import pytest

from kumo_local.cloud import KumoCloudAPI
from kumo_local.const import (
    KUMO_DEVICE_EXECUTE_URL,
    KUMO_DEVICE_INFREQUENT_UPDATES_URL,
    KUMO_DEVICE_UPDATES_URL,
    KUMO_LOGIN_URL,
)
from kumo_local.errors import KumoConnectionError
from kumo_local.session import SessionManager

from conftest import FakeHttp, error, ok


def device_record(record):
    return [{}, {}, [[record]]]


@pytest.fixture
def cloud(session, http):
    return KumoCloudAPI(session, http)


@pytest.mark.asyncio
async def test_query_device_returns_record(cloud, http):
    http.add(KUMO_DEVICE_UPDATES_URL, ok(device_record({"serial": "S1", "roomTemp": 21.5})))

    device = await cloud.query_device("S1")

    assert device == {"serial": "S1", "roomTemp": 21.5}
    call = http.calls[-1]
    assert json.loads(call["body"]) == ["T1", ["S1"]]
    # Logged in first
    assert http.calls[0]["url"] == KUMO_LOGIN_URL


@pytest.mark.asyncio
async def test_query_device_bad_shape(cloud, http):
    http.add(KUMO_DEVICE_UPDATES_URL, ok([{}, {}, []]))
    assert await cloud.query_device("S1") is None


@pytest.mark.asyncio
async def test_query_device_non_dict_record(cloud, http):
    http.add(KUMO_DEVICE_UPDATES_URL, ok(device_record("S1")))
    assert await cloud.query_device("S1") is None


@pytest.mark.asyncio
async def test_query_device_network_error(cloud, http):
    http.add(KUMO_DEVICE_UPDATES_URL, KumoConnectionError("connection refused"))
    assert await cloud.query_device("S1") is None


@pytest.mark.asyncio
async def test_query_device_without_session(registry, clock):
    http = FakeHttp()
    http.add(KUMO_LOGIN_URL, error(401, "Unauthorized"))
    session = SessionManager("user", "pw", registry, http, clock=clock)
    cloud = KumoCloudAPI(session, http)

    assert await cloud.query_device("S1") is None
    assert http.count(KUMO_DEVICE_UPDATES_URL) == 0


@pytest.mark.asyncio
async def test_unauthorized_invalidates_session(cloud, http, session):
    http.add(KUMO_DEVICE_UPDATES_URL, error(401, "Unauthorized"))

    assert await cloud.query_device("S1") is None
    assert session.token == "T1"
    assert session.acquired_at is None


@pytest.mark.asyncio
async def test_server_error_keeps_session(cloud, http, session):
    http.add(KUMO_DEVICE_UPDATES_URL, error(500, "Internal Server Error"))

    assert await cloud.query_device("S1") is None
    assert session.acquired_at is not None


@pytest.mark.asyncio
async def test_execute_accepted(cloud, http):
    http.add(KUMO_DEVICE_EXECUTE_URL, ok(device_record("S1")))

    assert await cloud.execute("S1", {"power": 1, "operationMode": 1}) is True
    assert json.loads(http.calls[-1]["body"]) == ["T1", {"S1": {"power": 1, "operationMode": 1}}]


@pytest.mark.asyncio
async def test_execute_serial_mismatch_still_accepted(cloud, http):
    http.add(KUMO_DEVICE_EXECUTE_URL, ok(device_record("OTHER")))
    assert await cloud.execute("S1", {"power": 0}) is True


@pytest.mark.asyncio
async def test_execute_empty_response_invalidates_session(cloud, http, session):
    http.add(KUMO_DEVICE_EXECUTE_URL, ok(None))

    assert await cloud.execute("S1", {"power": 0}) is False
    assert session.acquired_at is None


@pytest.mark.asyncio
async def test_execute_bad_shape(cloud, http, session):
    http.add(KUMO_DEVICE_EXECUTE_URL, ok([{}, {}]))

    assert await cloud.execute("S1", {"power": 0}) is False
    assert session.acquired_at is not None


@pytest.mark.asyncio
async def test_execute_http_error(cloud, http):
    http.add(KUMO_DEVICE_EXECUTE_URL, error(503, "Service Unavailable"))
    assert await cloud.execute("S1", {"power": 0}) is False


@pytest.mark.asyncio
async def test_infrequent_query(cloud, http):
    http.add(KUMO_DEVICE_INFREQUENT_UPDATES_URL, ok(device_record({"serial": "S1"})))

    assert await cloud.infrequent_query("S1") is True
    assert json.loads(http.calls[-1]["body"]) == ["T1", ["S1"]]


@pytest.mark.asyncio
async def test_infrequent_query_failure(cloud, http):
    http.add(KUMO_DEVICE_INFREQUENT_UPDATES_URL, error(500))
    assert await cloud.infrequent_query("S1") is False


@pytest.mark.asyncio
async def test_cloud_requests_use_cloud_timeout(cloud, http):
    http.add(KUMO_DEVICE_UPDATES_URL, ok(device_record({"serial": "S1"})))
    await cloud.query_device("S1")
    assert http.calls[-1]["timeout"] == 5.0
