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
"""Kumo Local - REST API for Mitsubishi Kumo devices via cloud and direct access."""

from .__version__ import __version__

__author__ = "Kumo Local Contributors"
__description__ = "REST API for Mitsubishi Kumo devices via cloud and direct access"

from .errors import (
    CredentialsError,
    DeviceNotFoundError,
    KumoAPIError,
    KumoAuthenticationError,
    KumoConfigurationError,
    KumoConnectionError,
    KumoError,
    KumoResponseError,
    KumoTimeoutError,
)
from .crypto import derive_token
from .registry import DeviceCredentials, DeviceRegistry, KumoDevice, merge_device
from .transport import HttpResponse, KumoHttp
from .session import SessionManager
from .cloud import KumoCloudAPI
from .direct import KumoDirectAPI, build_payload
from .database import DB_SCHEMA, CLOUD_SCHEMA, KumoStateStore, ensure_schema_and_migrate
from .api import KumoLocalAPI

__all__ = [
    "__version__",
    "CredentialsError",
    "DeviceNotFoundError",
    "KumoAPIError",
    "KumoAuthenticationError",
    "KumoConfigurationError",
    "KumoConnectionError",
    "KumoError",
    "KumoResponseError",
    "KumoTimeoutError",
    "derive_token",
    "DeviceCredentials",
    "DeviceRegistry",
    "KumoDevice",
    "merge_device",
    "HttpResponse",
    "KumoHttp",
    "SessionManager",
    "KumoCloudAPI",
    "KumoDirectAPI",
    "build_payload",
    "DB_SCHEMA",
    "CLOUD_SCHEMA",
    "KumoStateStore",
    "ensure_schema_and_migrate",
    "KumoLocalAPI",
]
