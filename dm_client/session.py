"""
Per-login encryption session.

Builds the storage, directory client and engine for one logged-in user and
tears them down at logout:

    async with EncryptionSession("alice", token, ClientSettings.from_env()) as engine:
        envelope = await engine.encrypt_for_peer("hi", "bob")
"""

import logging
from typing import Optional

from e2ee.engine import CryptoEngine
from e2ee.interfaces import LocalKeyStorage, PeerKeyDirectory

from .config import ClientSettings
from .directory import HttpPeerKeyDirectory
from .storage import InsecureSqliteKeyStorage

logger = logging.getLogger(__name__)


class EncryptionSession:
    """
    Owns the engine for the lifetime of one login.
    """

    def __init__(
        self,
        owner_id: str,
        token: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
        storage: Optional[LocalKeyStorage] = None,
        directory: Optional[PeerKeyDirectory] = None
    ):
        """
        Args:
            owner_id: Id of the logged-in user
            token: Bearer token for the directory
            settings: Client settings, defaults to ClientSettings()
            storage: Key storage override (defaults to SQLite under settings.storage_dir)
            directory: Directory override (defaults to the HTTP directory at settings.server_url)
        """
        self.owner_id = owner_id
        self.settings = settings or ClientSettings()
        self.storage = storage if storage is not None else InsecureSqliteKeyStorage(self.settings.storage_dir)
        self.directory = directory if directory is not None else HttpPeerKeyDirectory(
            self.settings.server_url,
            token=token,
            timeout=self.settings.http_timeout
        )
        self.engine = CryptoEngine.create(
            self.storage,
            self.directory,
            harden_with_hkdf=self.settings.harden_with_hkdf
        )

    async def start(self) -> CryptoEngine:
        """Load or create the identity; the session can be retried if this fails"""
        await self.engine.ensure_ready(self.owner_id)
        logger.info("Encryption ready for %s", self.owner_id)
        return self.engine

    async def close(self):
        """Logout: drop keys and release connections"""
        self.engine.clear()
        if isinstance(self.directory, HttpPeerKeyDirectory):
            await self.directory.aclose()
        if isinstance(self.storage, InsecureSqliteKeyStorage):
            self.storage.close()

    async def __aenter__(self) -> CryptoEngine:
        try:
            return await self.start()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
