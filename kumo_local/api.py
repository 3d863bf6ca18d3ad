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

"""Kumo Local API - ties the device registry, cloud session and clients together."""

import asyncio
import logging
import sqlite3
from typing import Any, Dict, Optional

from .const import (
    KUMO_API_TOKEN_REFRESH_INTERVAL,
    KUMO_BACKGROUND_REFRESH_INTERVAL,
    KUMO_KEY,
    KUMO_LOCAL_TIMEOUT,
)
from .cloud import KumoCloudAPI
from .database import KumoStateStore
from .direct import KumoDirectAPI
from .registry import DeviceRegistry
from .session import SessionManager
from .transport import KumoHttp

logger = logging.getLogger('kumo-local')


class KumoLocalAPI:
    """One registry, one cloud session and the two request clients built on them."""

    def __init__(
        self,
        username: str,
        password: str,
        db_path: Optional[str] = None,
        shared_key: str = KUMO_KEY,
        refresh_hours: float = KUMO_API_TOKEN_REFRESH_INTERVAL,
        local_timeout: float = KUMO_LOCAL_TIMEOUT,
        address_overrides: Optional[Dict[str, str]] = None,
        http: Optional[KumoHttp] = None
    ):
        self.registry = DeviceRegistry()
        self.http = http or KumoHttp()
        self.store = KumoStateStore(db_path) if db_path else None
        self.session = SessionManager(
            username, password, self.registry, self.http,
            refresh_hours=refresh_hours, store=self.store
        )
        self.cloud = KumoCloudAPI(self.session, self.http)
        self.direct = KumoDirectAPI(
            self.registry, self.session, self.http,
            shared_key=shared_key, timeout=local_timeout
        )

        self.address_overrides = dict(address_overrides or {})
        for serial, address in self.address_overrides.items():
            self.registry.set_override_address(serial, address)

        self.refresh_interval = KUMO_BACKGROUND_REFRESH_INTERVAL
        self._refresh_task: Optional[asyncio.Task] = None

    async def initialize(self) -> bool:
        """Restore stored state and make sure we have a cloud session."""
        if self.store:
            # Command line overrides win over stored ones
            for serial, address in self.store.load_overrides().items():
                if serial not in self.address_overrides:
                    self.registry.set_override_address(serial, address)
            new_devices = self.registry.load(self.store.load_devices())
            logger.info(f"Restored {new_devices} devices from database")
            stored = self.store.load_session()
            if stored:
                self.session.restore(*stored)

        if await self.session.ensure_valid():
            logger.info(f"Kumo Local API initialized with {len(self.registry)} devices")
            return True

        logger.warning("Kumo Cloud login failed; cached devices only until the next retry")
        return False

    def set_override_address(self, serial: str, address: Optional[str]):
        """Set or clear the operator address for a device and persist it."""
        self.registry.set_override_address(serial, address)
        if self.store:
            try:
                self.store.save_override(serial, address)
                self.store.save_devices(self.registry.devices)
            except sqlite3.Error as e:
                logger.warning(f"Failed to save address override for {serial}: {e}")

    def start_background_refresh(self):
        """Start the task that keeps the session and the device tree current."""
        if self._refresh_task and not self._refresh_task.done():
            logger.debug("Background refresh already running")
            return

        self._refresh_task = asyncio.create_task(self._background_refresh_loop())
        logger.info(f"Started background cloud refresh (every {self.refresh_interval / 60:.0f} minutes)")

    async def _background_refresh_loop(self):
        while True:
            try:
                await asyncio.sleep(self.refresh_interval)
                if not await self.session.ensure_valid():
                    logger.warning("Background refresh: not authenticated, will retry")
            except asyncio.CancelledError:
                logger.info("Background cloud refresh task cancelled")
                break
            except Exception as e:
                logger.error(f"Error in background refresh loop: {e}")

    async def stop_background_refresh(self):
        """Stop the background refresh task."""
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            logger.info("Stopped background cloud refresh task")
        self._refresh_task = None

    async def cleanup(self):
        """Stop background work and close the HTTP session."""
        logger.info("Starting cleanup...")
        await self.stop_background_refresh()
        await self.http.close()
        logger.info("Cleanup complete")

    def status(self) -> Dict[str, Any]:
        return {
            'session': self.session.to_dict(),
            'devices': len(self.registry),
            'background_refresh': bool(self._refresh_task and not self._refresh_task.done()),
        }
