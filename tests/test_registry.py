import threading

import pytest

from kumo_local.errors import CredentialsError, DeviceNotFoundError
from kumo_local.registry import DeviceRegistry, KumoDevice, merge_device

from conftest import CRYPTO_SERIAL, PASSWORD_B64, zone_entry


def nested_tree():
    return [
        {
            "zoneTable": {"S1": zone_entry("Living Room")},
            "children": [
                {
                    "zoneTable": {"S2": zone_entry("Bedroom", address="10.0.0.6")},
                    "children": [
                        {"zoneTable": {
                            "S3": zone_entry("Office", address="10.0.0.7"),
                            "S4": zone_entry("Den", address="10.0.0.8"),
                        }},
                    ],
                },
            ],
        },
        {"zoneTable": {"S5": zone_entry("Basement", address="10.0.0.9")}},
    ]


def test_parse_tree_registers_device():
    registry = DeviceRegistry()
    assert registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}]) == 1

    device = registry.get("S1")
    assert device.label == "Living Room"
    assert device.address == "10.0.0.5"
    assert device.override_address is None


def test_parse_tree_visits_every_depth():
    registry = DeviceRegistry()
    assert registry.parse_tree(nested_tree()) == 5
    assert sorted(d.serial for d in registry.devices) == ["S1", "S2", "S3", "S4", "S5"]


def test_parse_tree_is_idempotent():
    registry = DeviceRegistry()
    registry.parse_tree(nested_tree())

    assert registry.parse_tree(nested_tree()) == 0
    assert len(registry) == 5


def test_rediscovery_updates_label_and_zone_table():
    registry = DeviceRegistry()
    registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}])

    new = registry.parse_tree([{"zoneTable": {"S1": zone_entry("Den", address="10.0.0.50")}}])

    assert new == 0
    assert len(registry) == 1
    assert registry.get("S1").label == "Den"
    assert registry.get("S1").address == "10.0.0.50"


def test_discovery_never_removes_devices():
    registry = DeviceRegistry()
    registry.parse_tree(nested_tree())

    registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}])

    assert len(registry) == 5


def test_serial_seen_twice_in_one_tree_counts_once():
    registry = DeviceRegistry()
    tree = [
        {"zoneTable": {"S1": zone_entry("First")}, "children": [{"zoneTable": {"S1": zone_entry("Second")}}]},
    ]

    assert registry.parse_tree(tree) == 1
    assert registry.get("S1").label == "Second"


def test_malformed_nodes_are_skipped():
    registry = DeviceRegistry()
    tree = [
        "garbage",
        {"zoneTable": {"S1": "not a dict", "S2": zone_entry("Kitchen")}},
        {"zoneTable": ["wrong"]},
        {"children": None},
    ]

    assert registry.parse_tree(tree) == 1
    assert "S2" in registry
    assert "S1" not in registry


def test_merge_device_keeps_override_address():
    existing = KumoDevice("S1", "Old", {"address": "10.0.0.5"}, override_address="192.168.1.50")
    candidate = KumoDevice("S1", "New", {"address": "10.0.0.6"})

    merged = merge_device(existing, candidate)

    assert merged.label == "New"
    assert merged.zone_table == {"address": "10.0.0.6"}
    assert merged.override_address == "192.168.1.50"
    # Inputs are left alone
    assert existing.label == "Old"
    assert candidate.override_address is None


def test_resolve_returns_credentials():
    registry = DeviceRegistry()
    registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}])

    credentials = registry.resolve("S1")

    assert credentials.address == "10.0.0.5"
    assert credentials.crypto_serial == CRYPTO_SERIAL
    assert credentials.password == PASSWORD_B64


def test_resolve_prefers_override_address():
    registry = DeviceRegistry()
    registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}])

    registry.set_override_address("S1", "192.168.1.50")
    assert registry.resolve("S1").address == "192.168.1.50"

    registry.set_override_address("S1", None)
    assert registry.resolve("S1").address == "10.0.0.5"


def test_override_configured_before_discovery_is_applied():
    registry = DeviceRegistry()
    registry.set_override_address("S1", "192.168.1.50")

    registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}])

    assert registry.get("S1").override_address == "192.168.1.50"
    assert registry.resolve("S1").address == "192.168.1.50"


def test_resolve_unknown_serial():
    registry = DeviceRegistry()
    with pytest.raises(DeviceNotFoundError) as exc_info:
        registry.resolve("missing")
    assert exc_info.value.serial == "missing"


def test_resolve_without_key_material():
    registry = DeviceRegistry()
    registry.parse_tree([{"zoneTable": {"S1": {"label": "Bare", "address": "10.0.0.5"}}}])

    with pytest.raises(CredentialsError):
        registry.resolve("S1")


def test_load_seeds_registry_and_honours_cli_override():
    registry = DeviceRegistry()
    registry.set_override_address("S2", "192.168.1.60")
    stored = [
        KumoDevice("S1", "Living Room", zone_entry("Living Room"), override_address="192.168.1.50"),
        KumoDevice("S2", "Bedroom", zone_entry("Bedroom"), override_address="192.168.1.99"),
    ]

    assert registry.load(stored) == 2
    assert registry.get("S1").override_address == "192.168.1.50"
    assert registry.get("S2").override_address == "192.168.1.60"


def test_to_dict_has_no_key_material():
    device = KumoDevice("S1", "Living Room", zone_entry("Living Room"))
    public = device.to_dict()

    assert public["serial"] == "S1"
    assert public["address"] == "10.0.0.5"
    assert "password" not in public
    assert "cryptoSerial" not in public


@pytest.mark.parametrize("read", [len, lambda registry: "S1" in registry])
def test_size_and_membership_wait_for_lock(read):
    registry = DeviceRegistry()
    registry.parse_tree([{"zoneTable": {"S1": zone_entry("Living Room")}}])
    results = []

    registry._lock.acquire()
    reader = threading.Thread(target=lambda: results.append(read(registry)))
    reader.start()
    reader.join(0.05)
    assert reader.is_alive()

    registry._lock.release()
    reader.join(1)
    assert results in ([1], [True])
