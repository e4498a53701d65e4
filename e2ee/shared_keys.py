"""
Per-peer shared key derivation and memoization.

The key for a peer is a pure function of our private key and the peer's
public key, so caching it is only an optimization. Concurrent misses for the
same peer are coalesced into one in-flight derivation: one public key fetch
and one ECDH for all waiters.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .identity import IdentityKeyStore
from .primitives import (
    deserialize_public_key,
    ecdh_exchange,
    hkdf_derive,
    import_aead_key,
    serialize_public_key,
)

logger = logging.getLogger(__name__)

PublicKeyFetcher = Callable[[], Awaitable[bytes]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PeerPublicKeyRecord:
    """A peer key as returned by the directory; lives only for one derivation"""
    peer_id: str
    public_key_bytes: bytes
    fetched_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SharedKeyCacheEntry:
    """Derived AES-256-GCM key for one peer and the public key it came from"""
    peer_id: str
    key: AESGCM = field(repr=False)
    peer_public_key: bytes = field(repr=False)
    derived_at: datetime = field(default_factory=_utcnow)


class SharedSecretCache:
    """
    Derives and memoizes the symmetric key for each peer.

    By default the raw 256-bit ECDH output is used directly as the AES key.
    With ``harden_with_hkdf=True`` the secret is first passed through
    HKDF-SHA256; both sides of a conversation must use the same setting.
    """

    def __init__(self, identity: IdentityKeyStore, harden_with_hkdf: bool = False):
        """
        Args:
            identity: Store holding the local private key
            harden_with_hkdf: Run the ECDH secret through HKDF before use
        """
        self.identity = identity
        self.harden_with_hkdf = harden_with_hkdf
        self._entries: Dict[str, SharedKeyCacheEntry] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, peer_id: str) -> Optional[SharedKeyCacheEntry]:
        return self._entries.get(peer_id)

    async def get(self, peer_id: str, peer_public_key: bytes) -> AESGCM:
        """
        Return the key for `peer_id`, deriving it from `peer_public_key` on a miss.

        Raises:
            NotInitializedError: No local identity
            KeyImportError: Malformed or wrong-length public key
        """
        async def known_key() -> bytes:
            return peer_public_key

        return await self.get_or_derive(peer_id, known_key)

    async def get_or_derive(self, peer_id: str, fetch: PublicKeyFetcher) -> AESGCM:
        """
        Return the key for `peer_id`, calling `fetch` for the public key on a miss.

        Only the first caller's `fetch` runs; concurrent callers for the same
        peer wait on it and share its result or its exception. Errors raised
        by `fetch` propagate unchanged.
        """
        entry = self._entries.get(peer_id)
        if entry is not None:
            logger.debug("Using cached shared key for %s", peer_id)
            return entry.key

        task = self._pending.get(peer_id)
        if task is None:
            task = asyncio.ensure_future(self._derive(peer_id, fetch))
            self._pending[peer_id] = task
            task.add_done_callback(functools.partial(self._settle, peer_id))

        # shield: a cancelled waiter must not cancel the derivation for the others
        return await asyncio.shield(task)

    def invalidate(self, peer_id: str):
        """Forget the key for one peer, e.g. after the peer rotated keys"""
        self._entries.pop(peer_id, None)
        self._pending.pop(peer_id, None)

    def clear(self):
        """Forget every key; in-flight derivations finish but are not stored"""
        self._entries.clear()
        self._pending.clear()

    async def _derive(self, peer_id: str, fetch: PublicKeyFetcher) -> AESGCM:
        private_key = self.identity.current.private_key

        record = PeerPublicKeyRecord(peer_id=peer_id, public_key_bytes=await fetch())
        peer_public = deserialize_public_key(record.public_key_bytes)

        secret = ecdh_exchange(private_key, peer_public)
        if self.harden_with_hkdf:
            secret = hkdf_derive(secret)
        key = import_aead_key(secret)

        if self._pending.get(peer_id) is asyncio.current_task():
            self._entries[peer_id] = SharedKeyCacheEntry(
                peer_id=peer_id,
                key=key,
                peer_public_key=serialize_public_key(peer_public)
            )
            logger.debug("Derived shared key for %s", peer_id)
        else:
            logger.debug("Discarding shared key for %s: cache was cleared", peer_id)
        return key

    def _settle(self, peer_id: str, task: asyncio.Task):
        if self._pending.get(peer_id) is task:
            del self._pending[peer_id]
        if not task.cancelled():
            # Mark the exception retrieved; waiters still receive it
            task.exception()
