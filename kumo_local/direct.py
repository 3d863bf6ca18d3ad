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

"""Direct (local network) requests to Kumo adapters.

Requests are PUT to ``http://<address>/api?m=<token>`` with a JSON body of the
form ``{"c": {<subsystem>: {...}}}``. The adapter answers with the same shape
under ``"r"``, or with ``{"_api_error": ...}`` if it rejects the request.

A failed request is ambiguous: the adapter may be unreachable, or the device
metadata from the cloud (address, key material) may be stale. Every failure
therefore forces a cloud re-login, which also refreshes the device tree,
before the next attempt. At most KUMO_LOCAL_MAX_ATTEMPTS requests are sent.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .const import (
    KUMO_API_ERROR_KEY,
    KUMO_KEY,
    KUMO_LOCAL_MAX_ATTEMPTS,
    KUMO_LOCAL_TIMEOUT,
    LOCAL_HEADERS,
)
from .crypto import derive_token
from .errors import KumoAPIError, KumoConfigurationError, KumoError, KumoResponseError
from .registry import DeviceRegistry
from .session import SessionManager
from .transport import KumoHttp

logger = logging.getLogger('kumo-local')


def build_payload(command: Dict[str, Any]) -> str:
    """Serialize a request body. The same string is hashed and sent."""
    return json.dumps(command, separators=(',', ':'))


def _extract(data: Dict[str, Any], *path: str) -> Any:
    """Walk ``data['r'][path...]``."""
    node = data
    for key in ('r',) + path:
        if not isinstance(node, dict) or key not in node:
            raise KumoResponseError(f"Missing '{key}' in response")
        node = node[key]
    return node


class KumoDirectAPI:
    """Sends authenticated requests straight to adapters on the local network."""

    def __init__(
        self,
        registry: DeviceRegistry,
        session: SessionManager,
        http: KumoHttp,
        shared_key: str = KUMO_KEY,
        timeout: float = KUMO_LOCAL_TIMEOUT,
        max_attempts: int = KUMO_LOCAL_MAX_ATTEMPTS
    ):
        self.registry = registry
        self.session = session
        self.http = http
        self.shared_key = shared_key
        self.timeout = timeout
        self.max_attempts = max_attempts

    async def request(self, payload: str, serial: str) -> Optional[Dict[str, Any]]:
        """
        Send one request to a device, retrying with re-authentication.

        Args:
            payload: JSON request body
            serial: Device serial

        Returns:
            Decoded response body or None if every attempt failed
        """
        for attempt in range(1, self.max_attempts + 1):
            # Resolved on every attempt: a re-login may have changed the address
            try:
                credentials = self.registry.resolve(serial)
                token = derive_token(self.shared_key, credentials.password, credentials.crypto_serial, payload)
            except KumoConfigurationError as e:
                logger.error(f"Kumo API: cannot send direct request to {serial}: {e}")
                return None

            try:
                return await self._send(credentials.address, token, payload)
            except KumoError as e:
                logger.warning(
                    f"Kumo API: direct request to {serial} failed "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )

            if attempt >= self.max_attempts:
                break

            if not await self.session.ensure_valid(force_refresh=True):
                logger.warning(f"Kumo API: could not refresh cloud session, giving up on {serial}")
                return None

        return None

    async def _send(self, address: str, token: str, payload: str) -> Dict[str, Any]:
        url = f"http://{address}/api?m={token}"
        logger.debug(f"PUT http://{address}/api payload={payload}")

        response = await self.http.send('PUT', url, body=payload, headers=LOCAL_HEADERS, timeout=self.timeout)

        if not response.ok:
            raise KumoAPIError(f"response error from device: {response.status} {response.reason}",
                               status=response.status)

        data = response.data
        if not data or not isinstance(data, dict):
            raise KumoResponseError(f"unexpected response from device: {data!r}")
        if KUMO_API_ERROR_KEY in data:
            raise KumoAPIError(f"device rejected request: {data[KUMO_API_ERROR_KEY]}")

        logger.debug(f"Direct response: {data}")
        return data

    async def _query(self, serial: str, command: Dict[str, Any], *path: str) -> Any:
        data = await self.request(build_payload(command), serial)
        if data is None:
            return None

        try:
            return _extract(data, *path)
        except KumoResponseError as e:
            logger.warning(f"Kumo API: bad response from {serial} - {e}: {data}")
            return None

    async def query_status(self, serial: str) -> Optional[Dict[str, Any]]:
        """Indoor unit status (mode, set points, fan speed, room temperature)."""
        return await self._query(serial, {'c': {'indoorUnit': {'status': {}}}}, 'indoorUnit', 'status')

    async def execute(self, serial: str, command: Dict[str, Any]) -> bool:
        """
        Send a status change straight to the indoor unit.

        Args:
            serial: Device serial
            command: Status fields to set, e.g. ``{"mode": "heat", "spHeat": 21}``

        Returns:
            True if the adapter accepted the command
        """
        payload = build_payload({'c': {'indoorUnit': {'status': command}}})
        data = await self.request(payload, serial)

        if data is None:
            logger.warning(f"Kumo API: Failed to send command directly to device (Serial: {serial}).")
            return False

        return True

    async def query_sensors(self, serial: str) -> Optional[List[Dict[str, Any]]]:
        """Wireless sensors paired to the adapter (only entries with a uuid)."""
        sensors = await self._query(serial, {'c': {'sensors': {}}}, 'sensors')
        if sensors is None:
            return None

        if isinstance(sensors, dict):
            entries = list(sensors.values())
        elif isinstance(sensors, list):
            entries = sensors
        else:
            logger.warning(f"Kumo API: bad sensors response from {serial}: {sensors!r}")
            return None

        found = []
        for sensor in entries:
            if isinstance(sensor, dict) and sensor.get('uuid') is not None:
                logger.debug(f"Found sensor.uuid: {sensor['uuid']}")
                found.append(sensor)
        return found

    async def query_profile(self, serial: str) -> Optional[Dict[str, Any]]:
        """Indoor unit capability profile."""
        return await self._query(serial, {'c': {'indoorUnit': {'profile': {}}}}, 'indoorUnit', 'profile')

    async def query_adapter(self, serial: str) -> Optional[Dict[str, Any]]:
        """Wi-Fi adapter status."""
        return await self._query(serial, {'c': {'adapter': {'status': {}}}}, 'adapter', 'status')
