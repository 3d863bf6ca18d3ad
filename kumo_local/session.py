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

"""Kumo Cloud session (security token) management.

Token Management:
-----------------
- The login call returns a security token plus the whole device tree; every
  successful login also refreshes the device registry.
- Tokens are reused until the expiration window (hours) has passed.
- Lazy refresh: only when a caller asks for a valid session.
- Throttle: the login endpoint is called at most once per minute while a
  token is held. Inside the throttle window a token that is due for refresh
  is still handed out.
- Failed logins keep the previous token so callers can keep using it.
- Downstream code calls invalidate() after an authentication failure so the
  next ensure_valid() logs in again.

Only one login is in flight at any time; concurrent callers wait for it and
then see its result through the fast path or the throttle.
"""

import asyncio
import json
import logging
import sqlite3
import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from .const import (
    CLOUD_HEADERS,
    KUMO_API_TOKEN_REFRESH_INTERVAL,
    KUMO_APP_VERSION,
    KUMO_CLOUD_TIMEOUT,
    KUMO_LOGIN_THROTTLE_SECONDS,
    KUMO_LOGIN_URL,
)
from .errors import KumoError
from .registry import DeviceRegistry
from .transport import KumoHttp

if TYPE_CHECKING:
    from .database import KumoStateStore

logger = logging.getLogger('kumo-local')


def _login_field(data: Any, index: int, key: str) -> Any:
    """Return data[index][key] from the login array, or None."""
    if not isinstance(data, list) or len(data) <= index:
        return None
    entry = data[index]
    if not isinstance(entry, dict):
        return None
    return entry.get(key)


class SessionManager:
    """Owns the cloud security token and decides when to log in again."""

    def __init__(
        self,
        username: str,
        password: str,
        registry: DeviceRegistry,
        http: KumoHttp,
        refresh_hours: float = KUMO_API_TOKEN_REFRESH_INTERVAL,
        throttle_seconds: float = KUMO_LOGIN_THROTTLE_SECONDS,
        timeout: float = KUMO_CLOUD_TIMEOUT,
        store: Optional['KumoStateStore'] = None,
        clock: Callable[[], float] = time.time
    ):
        self.username = username
        self._password = password
        self.registry = registry
        self.http = http
        self.expiration_window = refresh_hours * 3600
        self.throttle_window = throttle_seconds
        self.timeout = timeout
        self.store = store
        self._clock = clock

        self.token: Optional[str] = None
        self.acquired_at: Optional[float] = None
        self.last_attempt_at: Optional[float] = None
        self.is_celsius: Optional[bool] = None

        self._lock = asyncio.Lock()

    @property
    def temperature_unit(self) -> Optional[str]:
        if self.is_celsius is None:
            return None
        return 'C' if self.is_celsius else 'F'

    def restore(
        self,
        token: Optional[str],
        acquired_at: Optional[float],
        last_attempt_at: Optional[float],
        is_celsius: Optional[bool]
    ):
        """Load a previously stored session."""
        self.token = token
        self.acquired_at = acquired_at
        self.last_attempt_at = last_attempt_at
        self.is_celsius = is_celsius
        if token:
            logger.info("Restored Kumo Cloud session from database")

    def invalidate(self):
        """Treat the current token as expired; the next ensure_valid() logs in."""
        if self.acquired_at is not None:
            logger.info("Kumo API: security token invalidated")
        self.acquired_at = None

    def is_fresh(self, now: Optional[float] = None) -> bool:
        """True if a token is held and younger than the expiration window."""
        if not self.token or self.acquired_at is None:
            return False
        now = self._clock() if now is None else now
        return (now - self.acquired_at) < self.expiration_window

    async def ensure_valid(self, force_refresh: bool = False) -> bool:
        """
        Make sure a usable security token is held.

        Args:
            force_refresh: Log in again even if the token has not expired
                (still subject to the throttle)

        Returns:
            True if a token can be used, False if none is available
        """
        async with self._lock:
            now = self._clock()

            # No token yet: always try, throttle or not
            if not self.token:
                return await self._acquire(now)

            if not force_refresh and self.is_fresh(now):
                return True

            if self.last_attempt_at is not None and (now - self.last_attempt_at) < self.throttle_window:
                logger.warning("Kumo API: throttling acquireSecurityToken API call.")
                return True

            logger.info("Kumo API: acquiring a new security token.")
            return await self._acquire(now)

    async def acquire(self) -> bool:
        """Log in unconditionally. Returns True on success."""
        async with self._lock:
            return await self._acquire(self._clock())

    async def _acquire(self, now: float) -> bool:
        self.last_attempt_at = now

        body = json.dumps({
            'username': self.username,
            'password': self._password,
            'appVersion': KUMO_APP_VERSION,
        })

        try:
            response = await self.http.send(
                'POST', KUMO_LOGIN_URL, body=body, headers=CLOUD_HEADERS, timeout=self.timeout
            )
        except KumoError as e:
            logger.error(f"Kumo API: error - {e}")
            return False

        if not response.ok:
            logger.warning(
                f"Kumo API: Authenticate request returned status {response.status} {response.reason}. "
                "Will try later."
            )
            return False

        data = response.data
        logger.debug(f"Login response: {data}")

        token = _login_field(data, 0, 'token')
        if not token:
            logger.warning("Kumo API: Unable to acquire a security token.")
            return False

        logger.info("Kumo API: Successfully connected to the Kumo API.")
        children = _login_field(data, 2, 'children') or []
        new_devices = self.registry.parse_tree(children)
        logger.info(f"Number of devices found: {new_devices}")

        self.token = token
        self.acquired_at = now
        self.is_celsius = bool(_login_field(data, 1, 'celsius'))

        self._persist()
        return True

    def _persist(self):
        if self.store is None:
            return
        try:
            self.store.save_session(self)
            self.store.save_devices(self.registry.devices)
        except sqlite3.Error as e:
            logger.warning(f"Failed to save Kumo session state: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Session status for reporting (never includes the token)."""
        now = self._clock()
        return {
            'authenticated': self.token is not None,
            'token_fresh': self.is_fresh(now),
            'token_age_seconds': int(now - self.acquired_at) if self.acquired_at is not None else None,
            'last_login_attempt_seconds': int(now - self.last_attempt_at) if self.last_attempt_at is not None else None,
            'temperature_unit': self.temperature_unit,
        }
