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

"""FastAPI route handlers for Kumo Local."""

import logging
import os
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .__version__ import __version__

# Configure logging
logger = logging.getLogger(__name__)

# Security
security = HTTPBearer(auto_error=False)

# API key configuration (from environment variable)
# Multiple keys can be specified, space-separated
API_KEYS_RAW = os.environ.get('KUMO_API_KEYS', '').strip()
API_KEYS = set(key.strip() for key in API_KEYS_RAW.split() if key.strip()) if API_KEYS_RAW else set()


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If API keys are configured (KUMO_API_KEYS environment variable), checks Bearer token.
    If no API keys are configured, authentication is disabled.

    Returns:
        The validated API key, or None if authentication is disabled

    Raises:
        HTTPException 401 if authentication fails
    """
    if not API_KEYS:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Kumo Local",
        description="Local REST API for Mitsubishi Kumo devices (cloud and direct)",
        version=__version__
    )

    if API_KEYS:
        logger.info(f"API authentication enabled ({len(API_KEYS)} key(s) configured)")
    else:
        logger.info("API authentication disabled (no KUMO_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_kumo_api):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_kumo_api: Callable that returns the current KumoLocalAPI instance
    """

    def _api():
        kumo_api = get_kumo_api()
        if not kumo_api:
            raise HTTPException(status_code=503, detail="Kumo Local is starting")
        return kumo_api

    def _device(kumo_api, serial: str):
        device = kumo_api.registry.get(serial)
        if device is None:
            raise HTTPException(status_code=404, detail=f"Device {serial} not found")
        return device

    def _require_session(kumo_api):
        if not kumo_api.session.token:
            raise HTTPException(status_code=503, detail="Not authenticated with Kumo Cloud")

    def _result(value, what: str):
        if value is None or value is False:
            raise HTTPException(status_code=502, detail=f"{what} failed")
        return value

    @app.get("/api", tags=["Info"])
    async def api_info(api_key: Optional[str] = Depends(get_api_key)):
        """API root with navigation."""
        return {
            "service": "Kumo Local",
            "description": "Local REST API for Mitsubishi Kumo devices (cloud and direct)",
            "version": __version__,
            "documentation": "/docs",
            "endpoints": {
                "status": "/status",
                "devices": "/devices",
                "refresh": "/refresh"
            }
        }

    @app.get("/status", tags=["Status"])
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        """Get session and registry status."""
        kumo_api = _api()
        return {"version": __version__, **kumo_api.status()}

    @app.get("/devices", tags=["Devices"])
    async def get_devices(api_key: Optional[str] = Depends(get_api_key)):
        """List all known devices."""
        kumo_api = _api()
        devices = [device.to_dict() for device in kumo_api.registry.devices]
        return {"devices": devices, "count": len(devices)}

    @app.get("/devices/{serial}", tags=["Cloud"])
    async def get_device(serial: str, api_key: Optional[str] = Depends(get_api_key)):
        """Query device status through Kumo Cloud."""
        kumo_api = _api()
        device = _device(kumo_api, serial)
        status_record = await kumo_api.cloud.query_device(serial)
        if status_record is None:
            _require_session(kumo_api)
        return {**device.to_dict(), "status": _result(status_record, "Cloud query")}

    @app.post("/devices/{serial}/command", tags=["Cloud"])
    async def post_cloud_command(
        serial: str,
        command: Dict[str, Any] = Body(...),
        api_key: Optional[str] = Depends(get_api_key)
    ):
        """Send a command through Kumo Cloud."""
        kumo_api = _api()
        _device(kumo_api, serial)
        ok = await kumo_api.cloud.execute(serial, command)
        if not ok:
            _require_session(kumo_api)
        _result(ok, "Cloud command")
        return {"success": True, "serial": serial}

    @app.post("/devices/{serial}/infrequent", tags=["Cloud"])
    async def post_infrequent_query(serial: str, api_key: Optional[str] = Depends(get_api_key)):
        """Run the slow-cadence cloud update query."""
        kumo_api = _api()
        _device(kumo_api, serial)
        ok = await kumo_api.cloud.infrequent_query(serial)
        if not ok:
            _require_session(kumo_api)
        _result(ok, "Infrequent query")
        return {"success": True, "serial": serial}

    @app.get("/devices/{serial}/status", tags=["Direct"])
    async def get_direct_status(serial: str, api_key: Optional[str] = Depends(get_api_key)):
        """Query indoor unit status directly from the adapter."""
        kumo_api = _api()
        _device(kumo_api, serial)
        return _result(await kumo_api.direct.query_status(serial), "Direct status query")

    @app.put("/devices/{serial}/status", tags=["Direct"])
    async def put_direct_status(
        serial: str,
        command: Dict[str, Any] = Body(...),
        api_key: Optional[str] = Depends(get_api_key)
    ):
        """Send a status change directly to the adapter."""
        kumo_api = _api()
        _device(kumo_api, serial)
        _result(await kumo_api.direct.execute(serial, command), "Direct command")
        return {"success": True, "serial": serial}

    @app.get("/devices/{serial}/sensors", tags=["Direct"])
    async def get_direct_sensors(serial: str, api_key: Optional[str] = Depends(get_api_key)):
        """List wireless sensors paired to the adapter."""
        kumo_api = _api()
        _device(kumo_api, serial)
        sensors = _result(await kumo_api.direct.query_sensors(serial), "Sensor query")
        return {"sensors": sensors, "count": len(sensors)}

    @app.get("/devices/{serial}/profile", tags=["Direct"])
    async def get_direct_profile(serial: str, api_key: Optional[str] = Depends(get_api_key)):
        """Indoor unit capability profile."""
        kumo_api = _api()
        _device(kumo_api, serial)
        return _result(await kumo_api.direct.query_profile(serial), "Profile query")

    @app.get("/devices/{serial}/adapter", tags=["Direct"])
    async def get_direct_adapter(serial: str, api_key: Optional[str] = Depends(get_api_key)):
        """Wi-Fi adapter status."""
        kumo_api = _api()
        _device(kumo_api, serial)
        return _result(await kumo_api.direct.query_adapter(serial), "Adapter query")

    @app.put("/devices/{serial}/address", tags=["Devices"])
    async def put_override_address(
        serial: str,
        body: Dict[str, Optional[str]] = Body(...),
        api_key: Optional[str] = Depends(get_api_key)
    ):
        """Set (or clear with null) the operator override address of a device."""
        kumo_api = _api()
        _device(kumo_api, serial)
        kumo_api.set_override_address(serial, body.get("address"))
        return kumo_api.registry.get(serial).to_dict()

    @app.post("/refresh", tags=["Status"])
    async def refresh(api_key: Optional[str] = Depends(get_api_key)):
        """Log in to Kumo Cloud again and refresh the device tree."""
        kumo_api = _api()
        ok = await kumo_api.session.ensure_valid(force_refresh=True)
        if not ok:
            raise HTTPException(status_code=503, detail="Kumo Cloud login failed")
        return {"success": True, "devices": len(kumo_api.registry)}
