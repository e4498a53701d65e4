"""
Collaborator interfaces consumed by the engine.

Any object with matching methods can be passed in; the directory and storage
backends in ``dm_client`` are the stock implementations.
"""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class PeerKeyDirectory(Protocol):
    # Remote map of participant id -> published public key
    async def fetch_public_key(self, peer_id: str) -> Optional[bytes]: ...
    async def publish_public_key(self, owner_id: str, public_key: bytes) -> None: ...


@runtime_checkable
class LocalKeyStorage(Protocol):
    # Opaque bytes keyed by participant id. Implementations store the private
    # key as-is, so they should be named as insecure until wrapped.
    def get(self, owner_id: str) -> Optional[bytes]: ...
    def put(self, owner_id: str, data: bytes) -> None: ...
    def delete(self, owner_id: str) -> None: ...
