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

"""Thin aiohttp transport shared by the cloud and local clients."""

import asyncio
import json
import logging
from typing import Any, Dict, NamedTuple, Optional

import aiohttp

from .errors import KumoConnectionError, KumoResponseError, KumoTimeoutError

logger = logging.getLogger('kumo-local')


class HttpResponse(NamedTuple):
    status: int
    reason: Optional[str]
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299


class KumoHttp:
    """
    Sends one request and returns status plus decoded JSON body.

    Timeouts are per request; one aiohttp session is reused for all calls.
    The body of a non-2xx response is not decoded.
    """

    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(
        self,
        method: str,
        url: str,
        *,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float
    ) -> HttpResponse:
        """
        Send a request.

        Raises:
            KumoTimeoutError: If no response arrived within ``timeout`` seconds
            KumoConnectionError: On any other network failure
            KumoResponseError: If a 2xx body is not valid text or JSON
        """
        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                data=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                if not 200 <= resp.status <= 299:
                    return HttpResponse(resp.status, resp.reason, None)

                raw = await resp.read()
        except asyncio.TimeoutError as e:
            raise KumoTimeoutError(f"Timed out after {timeout}s: {method} {url.split('?')[0]}") from e
        except aiohttp.ClientError as e:
            raise KumoConnectionError(f"{type(e).__name__}: {e}") from e

        try:
            data = json.loads(raw.decode(resp.charset or 'utf-8')) if raw else None
        except (LookupError, ValueError) as e:
            raise KumoResponseError(f"Unparsable response body: {e}") from e

        return HttpResponse(resp.status, resp.reason, data)
