import asyncio

import pytest

from kumo_local.const import KUMO_LOGIN_URL
from kumo_local.errors import KumoConnectionError
from kumo_local.registry import DeviceRegistry
from kumo_local.session import SessionManager
from kumo_local.transport import HttpResponse

PASSWORD_B64 = "cGFzcw=="  # "pass"
CRYPTO_SERIAL = "00112233445566778899"


def ok(data, status=200):
    return HttpResponse(status, "OK", data)


def error(status, reason="Error"):
    return HttpResponse(status, reason, None)


def zone_entry(label, address="10.0.0.5", crypto_serial=CRYPTO_SERIAL, password=PASSWORD_B64):
    return {
        "label": label,
        "address": address,
        "cryptoSerial": crypto_serial,
        "password": password,
        "mac": "aa:bb:cc:dd:ee:ff",
        "unitType": "ductless",
    }


def login_response(token="T1", celsius=True, children=None):
    if children is None:
        children = [{"zoneTable": {"S1": zone_entry("Living Room")}}]
    return [{"token": token}, {"celsius": celsius}, {"children": children}]


class FakeHttp:
    """Scripted stand-in for KumoHttp.

    Responses are queued per URL prefix. The last queued item for a prefix
    keeps being returned once the others are used up. Exceptions are raised.
    """

    def __init__(self):
        self.calls = []
        self._routes = {}
        self.closed = False

    def add(self, prefix, *responses):
        self._routes.setdefault(prefix, []).extend(responses)

    def set(self, prefix, *responses):
        self._routes[prefix] = list(responses)

    def count(self, prefix, method=None):
        return sum(
            1 for call in self.calls
            if call["url"].startswith(prefix) and (method is None or call["method"] == method)
        )

    async def send(self, method, url, *, body=None, headers=None, timeout):
        self.calls.append({"method": method, "url": url, "body": body, "headers": headers, "timeout": timeout})
        # Let other coroutines run, like a real network call would
        await asyncio.sleep(0)
        for prefix, queue in self._routes.items():
            if url.startswith(prefix) and queue:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                return item
        raise KumoConnectionError(f"ClientConnectorError: no route to {url}")

    async def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def http():
    fake = FakeHttp()
    fake.add(KUMO_LOGIN_URL, ok(login_response()))
    return fake


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def session(registry, http, clock):
    return SessionManager("user@example.com", "secret", registry, http, clock=clock)
