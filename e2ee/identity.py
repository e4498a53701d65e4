"""
Long-term identity key management.

The identity is a P-256 key pair used only for ECDH. It is generated on the
first login for a participant, persisted locally as PKCS#8 and reloaded on
later logins. Reloading rebuilds the public half from the private key so a
reloaded pair is always complete.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .errors import NotInitializedError, StorageError
from .interfaces import LocalKeyStorage
from .primitives import (
    deserialize_private_key,
    generate_ecdh_keypair,
    serialize_private_key,
    serialize_public_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityKeyPair:
    """
    The local participant's key pair.

    Attributes:
        private_key: P-256 private key (never logged or transmitted)
        public_key_bytes: 65-byte uncompressed public point
        created_at: When the pair was generated or loaded into memory
    """
    private_key: ec.EllipticCurvePrivateKey = field(repr=False)
    public_key_bytes: bytes
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_private_key(cls, private_key: ec.EllipticCurvePrivateKey) -> "IdentityKeyPair":
        return cls(
            private_key=private_key,
            public_key_bytes=serialize_public_key(private_key.public_key())
        )


class IdentityKeyStore:
    """
    Holds at most one active identity key pair per process and moves it
    to and from local storage.
    """

    def __init__(self, storage: LocalKeyStorage):
        """
        Args:
            storage: Key-value byte store keyed by participant id
        """
        self.storage = storage
        self._pair: Optional[IdentityKeyPair] = None

    @property
    def current(self) -> IdentityKeyPair:
        """The active key pair; raises NotInitializedError if none is loaded"""
        if self._pair is None:
            raise NotInitializedError("Crypto not initialized")
        return self._pair

    @property
    def is_initialized(self) -> bool:
        return self._pair is not None

    def initialize(self) -> IdentityKeyPair:
        """
        Generate a fresh key pair and make it the active one.

        Every call produces a new pair; callers guard against regenerating.

        Raises:
            KeyGenerationError: If the primitive is unavailable
        """
        return self.activate(self.generate())

    def generate(self) -> IdentityKeyPair:
        """Generate a fresh key pair without making it active"""
        private_key, _ = generate_ecdh_keypair()
        logger.info("Generated new identity key pair")
        return IdentityKeyPair.from_private_key(private_key)

    def activate(self, pair: IdentityKeyPair) -> IdentityKeyPair:
        self._pair = pair
        return pair

    def export_public_key(self, pair: Optional[IdentityKeyPair] = None) -> bytes:
        """Raw uncompressed public key (65 bytes) of `pair` or the active pair"""
        if pair is None:
            pair = self.current
        return pair.public_key_bytes

    def persist(self, pair: IdentityKeyPair, owner_id: str) -> None:
        """
        Store the private key under `owner_id`, replacing any earlier entry.

        Raises:
            StorageError: On I/O failure
        """
        data = serialize_private_key(pair.private_key)
        try:
            self.storage.put(owner_id, data)
        except OSError as e:
            raise StorageError(f"Failed to save private key for {owner_id}") from e
        logger.info("Saved identity key for %s", owner_id)

    def reload(self, owner_id: str) -> Optional[IdentityKeyPair]:
        """
        Load the persisted key pair for `owner_id` and make it active.

        Returns:
            The complete key pair, or None if nothing is stored

        Raises:
            StorageError: On I/O failure
            KeyImportError: If the stored bytes are not a P-256 PKCS#8 key
        """
        pair = self.load(owner_id)
        if pair is not None:
            self.activate(pair)
        return pair

    def load(self, owner_id: str) -> Optional[IdentityKeyPair]:
        """Like reload() but leaves the active pair untouched"""
        try:
            data = self.storage.get(owner_id)
        except OSError as e:
            raise StorageError(f"Failed to load private key for {owner_id}") from e

        if data is None:
            return None

        pair = IdentityKeyPair.from_private_key(deserialize_private_key(data))
        logger.info("Loaded identity key for %s", owner_id)
        return pair

    def clear(self):
        """Drop the active key pair"""
        self._pair = None
