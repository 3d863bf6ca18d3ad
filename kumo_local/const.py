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

"""Kumo Cloud endpoints and protocol constants."""

# Cloud API (Kumo Cloud v2, the endpoints used by the vendor web app)
KUMO_BASE_URL = "https://geo-c.kumocloud.com"
KUMO_LOGIN_URL = f"{KUMO_BASE_URL}/login"
KUMO_DEVICE_UPDATES_URL = f"{KUMO_BASE_URL}/getDeviceUpdates"
KUMO_DEVICE_INFREQUENT_UPDATES_URL = f"{KUMO_BASE_URL}/getInfrequentDeviceUpdates"
KUMO_DEVICE_EXECUTE_URL = f"{KUMO_BASE_URL}/sendDeviceCommands/v2"

# Version string the cloud expects in the login request
KUMO_APP_VERSION = "2.2.0"

# Shared key W used by the adapter firmware to check local request tokens
# (hex, 32 bytes). Same value for every adapter.
KUMO_KEY = "44c73283b498d432ff25f5c8e06a016aef931e68f0a00ea710e36e6338fb22db"

# Renew cloud credentials every so often, in hours
KUMO_API_TOKEN_REFRESH_INTERVAL = 2

# Never call the login endpoint more than once per minute
KUMO_LOGIN_THROTTLE_SECONDS = 60

# Timeouts in seconds
KUMO_CLOUD_TIMEOUT = 5.0
KUMO_LOCAL_TIMEOUT = 2.0

# Initial attempt + 2 retries for direct requests
KUMO_LOCAL_MAX_ATTEMPTS = 3

# Background session refresh cadence, in seconds
KUMO_BACKGROUND_REFRESH_INTERVAL = 15 * 60

# Marker the adapter puts in the response body when it rejects a request
KUMO_API_ERROR_KEY = "_api_error"

CLOUD_HEADERS = {
    'Accept-Encoding': 'gzip, deflate, br',
    'Connection': 'keep-alive',
    'Accept': 'application/json, text/plain, */*',
    'DNT': '1',
    'User-Agent': '',
    'Content-Type': 'application/json;charset=UTF-8',
    'Origin': 'https://app.kumocloud.com',
    'Sec-Fetch-Site': 'same-site',
    'Sec-Fetch-Mode': 'cors',
    'Sec-Fetch-Dest': 'empty',
    'Referer': 'https://app.kumocloud.com',
    'Accept-Language': 'en-US,en;q=0.9',
}

LOCAL_HEADERS = {
    'Accept': 'application/json, text/plain, */*',
    'Content-Type': 'application/json',
}
