"""
Encryption engine facade.

Composes the identity store, the peer key directory, the shared key cache
and the codec behind "encrypt for peer" / "decrypt from peer". One engine is
constructed per logged-in session and cleared at logout.
"""

import asyncio
import functools
import logging
from enum import Enum
from typing import Mapping, Optional, Union

from .codec import AeadCodec, EncryptedEnvelope
from .errors import (
    AuthenticationFailedError,
    KeyImportError,
    NotInitializedError,
    PeerNotEncryptionReadyError,
    TransportError,
)
from .identity import IdentityKeyPair, IdentityKeyStore
from .interfaces import LocalKeyStorage, PeerKeyDirectory
from .primitives import constant_time_compare, deserialize_public_key, serialize_public_key
from .shared_keys import SharedSecretCache

logger = logging.getLogger(__name__)

DECRYPTION_FAILED_TEXT = "[Decryption failed]"


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class CryptoEngine:
    """
    End-to-end encryption for direct messages.

    Usage:
        engine = CryptoEngine.create(storage, directory)
        await engine.ensure_ready("alice")
        envelope = await engine.encrypt_for_peer("hello", "bob")
        text = await engine.decrypt_from_peer(envelope, "bob")
        engine.clear()
    """

    def __init__(
        self,
        identity: IdentityKeyStore,
        directory: PeerKeyDirectory,
        cache: Optional[SharedSecretCache] = None,
        codec: Optional[AeadCodec] = None
    ):
        self.identity = identity
        self.directory = directory
        self.cache = cache if cache is not None else SharedSecretCache(identity)
        self.codec = codec if codec is not None else AeadCodec()
        self.owner_id: Optional[str] = None
        self._state = EngineState.UNINITIALIZED
        self._init_task: Optional[asyncio.Task] = None
        self._init_owner: Optional[str] = None

    @classmethod
    def create(
        cls,
        storage: LocalKeyStorage,
        directory: PeerKeyDirectory,
        harden_with_hkdf: bool = False
    ) -> "CryptoEngine":
        """Build an engine with the stock identity store, cache and codec"""
        identity = IdentityKeyStore(storage)
        return cls(identity, directory, SharedSecretCache(identity, harden_with_hkdf))

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    @property
    def public_key(self) -> bytes:
        """Our published public key (65 bytes)"""
        return self.identity.export_public_key()

    async def ensure_ready(self, owner_id: str) -> IdentityKeyPair:
        """
        Load or create the identity for `owner_id`.

        Reloads a persisted key if there is one (and repairs the directory
        entry); otherwise generates a new pair, publishes the public half and
        persists the private half. Concurrent callers share one attempt.

        Raises:
            KeyGenerationError, StorageError, KeyImportError, TransportError:
                The engine is left uninitialized and the call can be retried
        """
        if self._state is EngineState.READY:
            if owner_id == self.owner_id:
                return self.identity.current
            logger.info("Switching identity from %s to %s", self.owner_id, owner_id)
            self.clear()

        task = self._init_task
        if task is None or self._init_owner != owner_id:
            self._state = EngineState.INITIALIZING
            task = asyncio.ensure_future(self._initialize(owner_id))
            self._init_task = task
            self._init_owner = owner_id
            task.add_done_callback(self._settle_init)

        return await asyncio.shield(task)

    async def encrypt_for_peer(self, plaintext: Union[str, bytes], peer_id: str) -> EncryptedEnvelope:
        """
        Encrypt a message for `peer_id`.

        Raises:
            NotInitializedError: ensure_ready has not completed
            PeerNotEncryptionReadyError: The peer has no published key
            KeyImportError: The peer's published key is malformed
            TransportError: The directory could not be reached
        """
        self._require_ready()
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        key = await self.cache.get_or_derive(peer_id, functools.partial(self._fetch_peer_key, peer_id))
        return self.codec.encrypt(plaintext, key)

    async def open_from_peer(
        self,
        envelope: Union[EncryptedEnvelope, Mapping],
        peer_id: str
    ) -> bytes:
        """
        Decrypt a message exchanged with `peer_id`, raising on failure.

        `peer_id` is the counterparty of the conversation, whichever side
        sent the message. If verification fails and the peer has published a
        different key since we derived ours, the key is re-derived once.

        Raises:
            NotInitializedError, MalformedEnvelopeError, AuthenticationFailedError,
            PeerNotEncryptionReadyError, KeyImportError, TransportError
        """
        self._require_ready()
        if not isinstance(envelope, EncryptedEnvelope):
            envelope = EncryptedEnvelope.from_dict(envelope)

        key = await self.cache.get_or_derive(peer_id, functools.partial(self._fetch_peer_key, peer_id))
        try:
            return self.codec.decrypt(envelope, key)
        except AuthenticationFailedError:
            if not await self._peer_key_rotated(peer_id):
                raise

        key = await self.cache.get_or_derive(peer_id, functools.partial(self._fetch_peer_key, peer_id))
        return self.codec.decrypt(envelope, key)

    async def decrypt_from_peer(
        self,
        envelope: Union[EncryptedEnvelope, Mapping],
        peer_id: str
    ) -> str:
        """
        Decrypt a message for display.

        Never raises: any failure yields DECRYPTION_FAILED_TEXT so one bad
        message cannot break rendering of a conversation.
        """
        try:
            plaintext = await self.open_from_peer(envelope, peer_id)
            return plaintext.decode("utf-8")
        except Exception as e:
            logger.warning("Failed to decrypt message from %s: %s", peer_id, type(e).__name__)
            return DECRYPTION_FAILED_TEXT

    def forget_peer(self, peer_id: str):
        """Drop the cached key for `peer_id` so the next use re-derives it"""
        self.cache.invalidate(peer_id)

    def clear(self):
        """
        Discard the identity and all derived keys (call on logout).

        Operations already suspended finish with the old keys; new ones fail
        with NotInitializedError.
        """
        self._state = EngineState.UNINITIALIZED
        self._init_task = None
        self._init_owner = None
        self.owner_id = None
        self.identity.clear()
        self.cache.clear()
        logger.info("Crypto keys cleared")

    def _require_ready(self):
        if self._state is not EngineState.READY:
            raise NotInitializedError("Crypto not initialized")

    async def _initialize(self, owner_id: str) -> IdentityKeyPair:
        this_task = asyncio.current_task()
        if self._init_task is not this_task:
            raise NotInitializedError("Crypto keys were cleared during initialization")

        # The pair only becomes active once this task is known to still be current
        try:
            pair = self.identity.load(owner_id)
            if pair is not None:
                await self._repair_published_key(owner_id, pair)
            else:
                pair = self.identity.generate()
                await self.directory.publish_public_key(owner_id, pair.public_key_bytes)
                self.identity.persist(pair, owner_id)
                logger.info("New key pair generated and uploaded for %s", owner_id)
        except BaseException:
            if self._init_task is this_task:
                self._state = EngineState.UNINITIALIZED
            raise

        if self._init_task is not this_task:
            raise NotInitializedError("Crypto keys were cleared during initialization")

        self.identity.activate(pair)
        self.cache.clear()
        self.owner_id = owner_id
        self._state = EngineState.READY
        return pair

    def _settle_init(self, task: asyncio.Task):
        if self._init_task is task:
            self._init_task = None
            self._init_owner = None
        if not task.cancelled():
            task.exception()

    async def _repair_published_key(self, owner_id: str, pair: IdentityKeyPair):
        # The local key is authoritative; make the directory agree with it
        try:
            if not await self._published_key_matches(owner_id, pair.public_key_bytes):
                logger.warning("Published key for %s is missing or stale, republishing", owner_id)
                await self.directory.publish_public_key(owner_id, pair.public_key_bytes)
        except TransportError:
            logger.warning("Could not verify published key for %s", owner_id)

    async def _published_key_matches(self, owner_id: str, ours: bytes) -> bool:
        try:
            published = await self.directory.fetch_public_key(owner_id)
        except KeyImportError:
            return False
        return published is not None and self._same_point(published, ours)

    @staticmethod
    def _same_point(published: bytes, ours: bytes) -> bool:
        try:
            normalized = serialize_public_key(deserialize_public_key(published))
        except KeyImportError:
            return False
        return constant_time_compare(normalized, ours)

    async def _fetch_peer_key(self, peer_id: str) -> bytes:
        public_key = await self.directory.fetch_public_key(peer_id)
        if public_key is None:
            raise PeerNotEncryptionReadyError(peer_id)
        return public_key

    async def _peer_key_rotated(self, peer_id: str) -> bool:
        entry = self.cache.entry(peer_id)
        if entry is None:
            return False
        try:
            current = await self.directory.fetch_public_key(peer_id)
        except Exception as e:
            logger.warning("Could not check %s for a new public key: %s", peer_id, type(e).__name__)
            return False
        if current is None or self._same_point(current, entry.peer_public_key):
            return False
        logger.info("Public key for %s changed, re-deriving shared key", peer_id)
        self.cache.invalidate(peer_id)
        return True
