"""
Local storage for identity keys.

Keys are stored UNENCRYPTED. The class names say so on purpose: swap in a
passphrase-wrapped store before relying on this on a shared machine.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from e2ee.errors import StorageError

logger = logging.getLogger(__name__)


class InsecureSqliteKeyStorage:
    """
    SQLite-backed key-value store of private keys, one row per participant.
    """

    def __init__(self, storage_dir: str = "client_data", filename: str = "identity_keys.db"):
        """
        Initialize key storage.

        Args:
            storage_dir: Directory holding the database
            filename: Database file name
        """
        self.storage_dir = Path(storage_dir)
        self.db_path = self.storage_dir / filename
        self.db: Optional[sqlite3.Connection] = None

    def _connect(self) -> sqlite3.Connection:
        """Open the database on first use and create the table"""
        if self.db is not None:
            return self.db

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self.db = sqlite3.connect(str(self.db_path))
            self.db.execute("""
                CREATE TABLE IF NOT EXISTS identity_keys (
                    owner_id TEXT PRIMARY KEY,
                    private_key BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self.db.commit()
        except (sqlite3.Error, OSError) as e:
            self.db = None
            raise StorageError(f"Failed to open key storage at {self.db_path}") from e
        logger.debug("Opened key storage at %s", self.db_path)
        return self.db

    def get(self, owner_id: str) -> Optional[bytes]:
        """
        Load the stored key for a participant.

        Returns:
            Key bytes or None if nothing is stored
        """
        try:
            cursor = self._connect().execute(
                "SELECT private_key FROM identity_keys WHERE owner_id = ?", (owner_id,)
            )
            result = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load private key for {owner_id}") from e

        if result:
            return bytes(result[0])
        return None

    def put(self, owner_id: str, data: bytes):
        """Store key bytes for a participant, replacing any earlier row"""
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            db = self._connect()
            db.execute(
                "INSERT OR REPLACE INTO identity_keys (owner_id, private_key, updated_at) VALUES (?, ?, ?)",
                (owner_id, data, timestamp)
            )
            db.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save private key for {owner_id}") from e

    def delete(self, owner_id: str):
        try:
            db = self._connect()
            db.execute("DELETE FROM identity_keys WHERE owner_id = ?", (owner_id,))
            db.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete private key for {owner_id}") from e

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None


class InsecureMemoryKeyStorage:
    """Dict-backed store for tests and throwaway sessions"""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    def get(self, owner_id: str) -> Optional[bytes]:
        return self._data.get(owner_id)

    def put(self, owner_id: str, data: bytes):
        self._data[owner_id] = bytes(data)

    def delete(self, owner_id: str):
        self._data.pop(owner_id, None)
