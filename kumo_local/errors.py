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

"""Exceptions raised inside Kumo Local.

Public operations catch these and report failure as None/False; they are
meant for the layers below (transport, token derivation, registry lookups).
"""

from typing import Optional


class KumoError(Exception):
    """Base exception for Kumo Local."""


class KumoConnectionError(KumoError):
    """Raised when a request could not reach the cloud or the adapter."""


class KumoTimeoutError(KumoConnectionError):
    """Raised when a request times out."""


class KumoResponseError(KumoError):
    """Raised when a response body cannot be parsed or has an unexpected shape."""


class KumoAPIError(KumoError):
    """Raised when the remote side rejects a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class KumoAuthenticationError(KumoError):
    """Raised when no usable cloud session is available."""


class KumoConfigurationError(KumoError):
    """Raised for problems that retrying cannot fix."""


class DeviceNotFoundError(KumoConfigurationError):
    """Raised when a serial is not in the device registry."""

    def __init__(self, serial: str):
        super().__init__(f"Device not found: {serial}")
        self.serial = serial


class CredentialsError(KumoConfigurationError):
    """Raised when device key material is missing or malformed."""
