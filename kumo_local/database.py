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

"""Database schema and state storage for Kumo Local."""

import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from .registry import KumoDevice

if TYPE_CHECKING:
    from .session import SessionManager

logger = logging.getLogger(__name__)

# Supported schema version for this codebase
SUPPORTED_SCHEMA_VERSION = 2

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    serial TEXT PRIMARY KEY,
    label TEXT,
    zone_table TEXT NOT NULL,
    override_address TEXT,
    first_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_seen TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CLOUD_SCHEMA = """
CREATE TABLE IF NOT EXISTS kumo_session (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    token TEXT,
    acquired_at REAL,
    last_attempt_at REAL,
    is_celsius BOOLEAN,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

# Operator addresses, also for serials the cloud has not reported yet
OVERRIDE_SCHEMA = """
CREATE TABLE IF NOT EXISTS address_overrides (
    serial TEXT PRIMARY KEY,
    address TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def ensure_schema_and_migrate(db_path: str):
    """Ensure all schemas exist and run DB migrations using PRAGMA user_version.

    Refuses to open a database written by a newer version of Kumo Local.
    Migration to user_version 2 adds the address_overrides table and copies
    the override addresses already stored on devices into it.
    """
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute("PRAGMA user_version").fetchone()
        current_version = row[0] if row else 0
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})"
            )

        conn.executescript(DB_SCHEMA)
        conn.executescript(CLOUD_SCHEMA)
        conn.executescript(OVERRIDE_SCHEMA)

        # Migration to version 2: copy device override addresses to their own table
        if 0 < current_version < 2:
            conn.execute("""
                INSERT OR IGNORE INTO address_overrides (serial, address)
                SELECT serial, override_address FROM devices
                WHERE override_address IS NOT NULL AND override_address != ''
            """)
            logger.info("Copied device override addresses into address_overrides")

        if current_version < SUPPORTED_SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {SUPPORTED_SCHEMA_VERSION}")
            logger.info(f"Database schema initialized at version {SUPPORTED_SCHEMA_VERSION}")
        conn.commit()
    finally:
        conn.close()


class KumoStateStore:
    """Persists the cloud session and the device registry between runs."""

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to SQLite database
        """
        self.db_path = db_path
        ensure_schema_and_migrate(db_path)

    def save_session(self, session: 'SessionManager'):
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO kumo_session
                (id, token, acquired_at, last_attempt_at, is_celsius, updated_at)
                VALUES (1, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            """, (session.token, session.acquired_at, session.last_attempt_at, session.is_celsius))
            conn.commit()
        finally:
            conn.close()
        logger.debug("Saved Kumo Cloud session")

    def load_session(self) -> Optional[Tuple[Optional[str], Optional[float], Optional[float], Optional[bool]]]:
        """Return (token, acquired_at, last_attempt_at, is_celsius) or None."""
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute("""
                SELECT token, acquired_at, last_attempt_at, is_celsius
                FROM kumo_session
                WHERE id = 1
            """).fetchone()
        finally:
            conn.close()

        if not row:
            return None

        token, acquired_at, last_attempt_at, is_celsius = row
        return token, acquired_at, last_attempt_at, None if is_celsius is None else bool(is_celsius)

    def save_devices(self, devices: Iterable[KumoDevice]):
        conn = sqlite3.connect(self.db_path)
        count = 0
        try:
            for device in devices:
                conn.execute("""
                    INSERT INTO devices (serial, label, zone_table, override_address)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(serial) DO UPDATE SET
                        label = excluded.label,
                        zone_table = excluded.zone_table,
                        override_address = excluded.override_address,
                        last_seen = CURRENT_TIMESTAMP
                """, (device.serial, device.label, json.dumps(device.zone_table), device.override_address))
                count += 1
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Saved {count} devices")

    def load_devices(self) -> List[KumoDevice]:
        conn = sqlite3.connect(self.db_path)
        try:
            rows = conn.execute("""
                SELECT serial, label, zone_table, override_address
                FROM devices
                ORDER BY first_seen, serial
            """).fetchall()
        finally:
            conn.close()

        devices = []
        for serial, label, zone_table_json, override_address in rows:
            try:
                zone_table = json.loads(zone_table_json)
            except ValueError as e:
                logger.warning(f"Skipping stored device {serial} with unreadable zone table: {e}")
                continue
            devices.append(KumoDevice(serial, label, zone_table, override_address))

        logger.info(f"Loaded {len(devices)} devices from cache")
        return devices

    def save_override(self, serial: str, address: Optional[str]):
        """Store (or delete, with None) the operator address for a serial."""
        conn = sqlite3.connect(self.db_path)
        try:
            if address:
                conn.execute("""
                    INSERT INTO address_overrides (serial, address)
                    VALUES (?, ?)
                    ON CONFLICT(serial) DO UPDATE SET
                        address = excluded.address,
                        updated_at = CURRENT_TIMESTAMP
                """, (serial, address))
            else:
                conn.execute("DELETE FROM address_overrides WHERE serial = ?", (serial,))
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Saved address override for {serial}: {address}")

    def load_overrides(self) -> Dict[str, str]:
        conn = sqlite3.connect(self.db_path)
        try:
            rows = conn.execute("SELECT serial, address FROM address_overrides").fetchall()
        finally:
            conn.close()
        return dict(rows)
