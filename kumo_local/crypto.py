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

"""Token derivation for the direct (local network) adapter protocol.

Every request sent straight to an adapter carries a token in its URL
(``/api?m=<token>``). The adapter recomputes the token from its own copy of
the device password and crypto serial plus the request body, and rejects the
request if the two differ. The result has to match the firmware bit for bit.

Derivation::

    W = unhex(shared_key)                       # 32 bytes
    H = unhex(hex(sha256(b64decode(password) + payload)))
    I = W | H | 08 40 00 | 00 * 12 | C[8] | C[4:8] | C[0:4]    # 88 bytes
    token = hex(sha256(unhex(hex(I))))

where C is the decoded crypto serial. The hex round trips are part of the
derivation and must stay.
"""

import base64
import binascii
import hashlib

from .errors import CredentialsError

TOKEN_BUFFER_SIZE = 88
S_PARAM = 0


def _h2l(value: str, what: str) -> bytes:
    """Decode a hex string to bytes."""
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError) as e:
        raise CredentialsError(f"Malformed {what}: {e}") from e


def _l2h(data: bytes) -> str:
    """Encode bytes as a lowercase hex string."""
    return binascii.hexlify(data).decode('ascii')


def _payload_bytes(secret: bytes, payload: str) -> bytes:
    # One byte per character (code point), not a multi-byte encoding
    try:
        return secret + payload.encode('latin-1')
    except UnicodeEncodeError as e:
        raise CredentialsError(f"Payload contains characters outside a single byte: {e}") from e


def build_intermediate(shared_key: bytes, data_hash: bytes, crypto_serial: bytes) -> bytes:
    """Lay out the 88-byte buffer that is hashed into the final token."""
    if len(shared_key) != 32:
        raise CredentialsError(f"Shared key must be 32 bytes, got {len(shared_key)}")
    if len(crypto_serial) < 9:
        raise CredentialsError(f"Crypto serial must be at least 9 bytes, got {len(crypto_serial)}")

    intermediate = bytearray(TOKEN_BUFFER_SIZE)
    intermediate[0:32] = shared_key
    intermediate[32:64] = data_hash
    intermediate[64] = 0x08
    intermediate[65] = 0x40
    intermediate[66] = S_PARAM
    intermediate[79] = crypto_serial[8]
    intermediate[80:84] = crypto_serial[4:8]
    intermediate[84:88] = crypto_serial[0:4]
    return bytes(intermediate)


def derive_token(shared_key: str, password: str, crypto_serial: str, payload: str) -> str:
    """
    Derive the token for one direct request.

    Args:
        shared_key: Hex encoded shared key W (see const.KUMO_KEY)
        password: Base64 encoded device password from the zone table
        crypto_serial: Hex encoded crypto serial from the zone table
        payload: Exact request body that will be sent

    Returns:
        64 character lowercase hex token

    Raises:
        CredentialsError: If any of the key material cannot be decoded
    """
    key = _h2l(shared_key, 'shared key')

    try:
        secret = base64.b64decode(password, validate=True)
    except (TypeError, ValueError) as e:
        raise CredentialsError(f"Malformed device password: {e}") from e

    message = _payload_bytes(secret, payload)

    data_hash = _h2l(hashlib.sha256(message).hexdigest(), 'data hash')
    serial = _h2l(crypto_serial, 'crypto serial')

    intermediate = build_intermediate(key, data_hash, serial)
    return hashlib.sha256(_h2l(_l2h(intermediate), 'intermediate')).hexdigest()

