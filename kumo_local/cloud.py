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

"""Kumo Cloud device queries and commands.

All calls POST a JSON array whose first element is the security token. The
interesting part of every response sits at ``[2][0][0]``.

Failures are reported as None/False and are not retried here; callers poll
and try again on their next cycle.
"""

import json
import logging
from typing import Any, Dict, Optional

from .const import (
    CLOUD_HEADERS,
    KUMO_CLOUD_TIMEOUT,
    KUMO_DEVICE_EXECUTE_URL,
    KUMO_DEVICE_INFREQUENT_UPDATES_URL,
    KUMO_DEVICE_UPDATES_URL,
)
from .errors import KumoAPIError, KumoAuthenticationError, KumoError, KumoResponseError
from .session import SessionManager
from .transport import KumoHttp

logger = logging.getLogger('kumo-local')


def _first_record(data: Any) -> Any:
    """Return data[2][0][0] or raise KumoResponseError."""
    try:
        return data[2][0][0]
    except (IndexError, KeyError, TypeError) as e:
        raise KumoResponseError(f"Unexpected response shape: {e}") from e


class KumoCloudAPI:
    """Device level calls against Kumo Cloud."""

    def __init__(self, session: SessionManager, http: KumoHttp, timeout: float = KUMO_CLOUD_TIMEOUT):
        self.session = session
        self.http = http
        self.timeout = timeout

    async def _post(self, url: str, payload: Any) -> Any:
        """
        POST ``[token, payload]`` and return the decoded body.

        Raises:
            KumoAPIError: On a non-2xx status (401/403 also invalidate the session)
            KumoConnectionError: On network failure or timeout
            KumoResponseError: On an empty or unparsable body
        """
        body = json.dumps([self.session.token, payload])
        response = await self.http.send('POST', url, body=body, headers=CLOUD_HEADERS, timeout=self.timeout)

        if not response.ok:
            if response.status in (401, 403):
                self.session.invalidate()
            raise KumoAPIError(f"HTTP {response.status} {response.reason}", status=response.status)

        if not response.data:
            raise KumoResponseError("Empty response")

        logger.debug(f"Kumo response: {response.data}")
        return response.data

    async def _ensure_session(self):
        if not await self.session.ensure_valid():
            raise KumoAuthenticationError("not authenticated with Kumo Cloud")

    async def query_device(self, serial: str) -> Optional[Dict[str, Any]]:
        """
        Get the current status record of a device.

        Returns:
            Device status dict or None on error
        """
        try:
            await self._ensure_session()
            data = await self._post(KUMO_DEVICE_UPDATES_URL, [serial])
            device = _first_record(data)
        except KumoError as e:
            logger.warning(f"Kumo API: queryDevice error for {serial}: {e}")
            return None

        if not isinstance(device, dict):
            logger.warning(f"Kumo API: error querying device: {serial}.")
            return None

        return device

    async def execute(self, serial: str, command: Dict[str, Any]) -> bool:
        """
        Send a command to a device through the cloud.

        Args:
            serial: Device serial
            command: Command fields, passed through as-is

        Returns:
            True if the cloud accepted the command
        """
        try:
            await self._ensure_session()
            data = await self._post(KUMO_DEVICE_EXECUTE_URL, {serial: command})
        except KumoResponseError as e:
            logger.warning(
                f"Kumo API: Unable to send the command to Kumo servers ({e}). Acquiring a new security token."
            )
            self.session.invalidate()
            return False
        except KumoError as e:
            logger.warning(f"Kumo API: execute error for {serial}: {e}")
            return False

        try:
            echoed = _first_record(data)
        except KumoResponseError as e:
            logger.warning(f"Kumo API: Bad response to command for {serial}: {e}")
            return False

        # The command was accepted even if the echo does not match
        if echoed != serial:
            logger.warning(f"Kumo API: Bad response. Expected serial {serial}, got {echoed!r}")

        return True

    async def infrequent_query(self, serial: str) -> bool:
        """Run the slow-cadence update query for a device. Returns True on success."""
        try:
            await self._ensure_session()
            await self._post(KUMO_DEVICE_INFREQUENT_UPDATES_URL, [serial])
        except KumoError as e:
            logger.warning(f"Kumo API: error querying device: {serial}: {e}")
            return False

        return True
