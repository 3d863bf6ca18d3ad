#
# Copyright 2025 The KumoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Device registry built from the device tree reported by Kumo Cloud.

The login response carries a tree of sites and groups. Every node may hold a
``zoneTable`` (serial -> device fields) and a list of ``children``. Devices
are merged by serial; the registry only ever adds or updates entries.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from .errors import CredentialsError, DeviceNotFoundError

logger = logging.getLogger('kumo-local')


class DeviceCredentials(NamedTuple):
    """What a direct request needs to reach and authenticate to an adapter."""
    address: str
    crypto_serial: str
    password: str


class KumoDevice:
    """One indoor unit as discovered from the cloud device tree."""

    def __init__(
        self,
        serial: str,
        label: Optional[str],
        zone_table: Dict[str, Any],
        override_address: Optional[str] = None
    ):
        self.serial = serial
        self.label = label
        self.zone_table = zone_table
        self.override_address = override_address

    @property
    def address(self) -> Optional[str]:
        """Network address, preferring the operator override."""
        return self.override_address or self.zone_table.get('address')

    def to_dict(self) -> Dict[str, Any]:
        """Public view of the device (no key material)."""
        return {
            'serial': self.serial,
            'label': self.label,
            'address': self.address,
            'override_address': self.override_address,
            'mac': self.zone_table.get('mac'),
            'unit_type': self.zone_table.get('unitType'),
        }

    def __repr__(self) -> str:
        return f"<KumoDevice {self.serial} '{self.label}' @ {self.address}>"


def merge_device(existing: KumoDevice, candidate: KumoDevice) -> KumoDevice:
    """
    Merge a rediscovered device into the known one.

    Label and zone table are last-write-wins; the override address is an
    operator setting and is never touched by discovery.
    """
    return KumoDevice(
        serial=existing.serial,
        label=candidate.label,
        zone_table=candidate.zone_table,
        override_address=existing.override_address
    )


class DeviceRegistry:
    """Flat, serial-keyed view of every device seen so far."""

    def __init__(self):
        self._devices: Dict[str, KumoDevice] = {}
        self._overrides: Dict[str, str] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, serial: str) -> bool:
        with self._lock:
            return serial in self._devices

    @property
    def devices(self) -> List[KumoDevice]:
        with self._lock:
            return list(self._devices.values())

    def get(self, serial: str) -> Optional[KumoDevice]:
        with self._lock:
            return self._devices.get(serial)

    def parse_tree(self, nodes: List[Dict[str, Any]]) -> int:
        """
        Merge a device tree into the registry.

        Args:
            nodes: List of tree nodes (the ``children`` of the login response)

        Returns:
            Number of devices that were not known before this call
        """
        with self._lock:
            return self._parse_nodes(nodes)

    def _parse_nodes(self, nodes) -> int:
        new_devices = 0

        if not isinstance(nodes, list):
            logger.warning(f"Ignoring malformed device tree level: {type(nodes).__name__}")
            return 0

        for node in nodes:
            if not isinstance(node, dict):
                logger.warning(f"Ignoring malformed device tree node: {node!r}")
                continue

            zone_table = node.get('zoneTable') or {}
            if not isinstance(zone_table, dict):
                logger.warning(f"Ignoring malformed zone table: {zone_table!r}")
                zone_table = {}

            for serial, fields in zone_table.items():
                if not isinstance(fields, dict):
                    logger.warning(f"Ignoring zone table entry without fields: {serial}")
                    continue
                candidate = KumoDevice(serial, fields.get('label'), fields)
                if self._upsert(candidate):
                    new_devices += 1

            if 'children' in node:
                new_devices += self._parse_nodes(node['children'])

        return new_devices

    def _upsert(self, candidate: KumoDevice) -> bool:
        """Insert or merge one device. Returns True if it was new."""
        existing = self._devices.get(candidate.serial)
        if existing is not None:
            self._devices[candidate.serial] = merge_device(existing, candidate)
            logger.info(f"Updated existing device. Serial: {candidate.serial}. Label: {candidate.label}")
            return False

        override = self._overrides.get(candidate.serial, candidate.override_address)
        self._devices[candidate.serial] = KumoDevice(
            candidate.serial, candidate.label, candidate.zone_table, override
        )
        logger.info(f"Found device. Serial: {candidate.serial}. Label: {candidate.label}")
        return True

    def load(self, devices: Iterable[KumoDevice]) -> int:
        """Seed the registry from stored devices. Returns how many were new."""
        with self._lock:
            return sum(1 for device in devices if self._upsert(device))

    def set_override_address(self, serial: str, address: Optional[str]):
        """
        Set (or clear, with None) the operator address for a device.

        Overrides for serials not yet discovered are applied on discovery.
        """
        with self._lock:
            if address:
                self._overrides[serial] = address
            else:
                self._overrides.pop(serial, None)

            device = self._devices.get(serial)
            if device is not None:
                device.override_address = address or None
                logger.info(f"Address override for {serial}: {device.override_address}")

    def resolve(self, serial: str) -> DeviceCredentials:
        """
        Look up what is needed for a direct request to a device.

        Raises:
            DeviceNotFoundError: If the serial is unknown
            CredentialsError: If the zone table lacks address or key material
        """
        with self._lock:
            device = self._devices.get(serial)
            if device is None:
                raise DeviceNotFoundError(serial)

            address = device.address
            crypto_serial = device.zone_table.get('cryptoSerial')
            password = device.zone_table.get('password')

        if not address:
            raise CredentialsError(f"No network address known for device {serial}")
        if not crypto_serial or not password:
            raise CredentialsError(f"Zone table for device {serial} has no key material")

        return DeviceCredentials(address, crypto_serial, password)
