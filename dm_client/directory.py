"""
Public key directory clients.

The server keeps one published P-256 public key per user:
- GET  /api/users/{user_id}/public-key -> {"publicKey": "<base64>"} or 404
- PUT  /api/users/public-key           <- {"publicKey": "<base64>"} (bearer auth)
"""

import logging
from typing import Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from e2ee.errors import KeyImportError, TransportError
from e2ee.primitives import b64decode, b64encode, is_valid_public_key

logger = logging.getLogger(__name__)


class PublicKeyBody(BaseModel):
    """Request/response body for the public key endpoints"""
    publicKey: str


class HttpPeerKeyDirectory:
    """
    Directory client over HTTP.

    A missing key (404) is reported as None; any other failure raises
    TransportError.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8000",
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            server_url: Base URL of the chat server
            token: Bearer token of the logged-in user
            timeout: Request timeout in seconds
            client: Pre-built client (tests pass one with a mock transport)
        """
        self.server_url = server_url.rstrip("/")
        self.token = token
        self.http_client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def fetch_public_key(self, peer_id: str) -> Optional[bytes]:
        """
        Get a user's published public key.

        Returns:
            Raw point bytes, or None if the user has not set up encryption
        """
        try:
            response = await self.http_client.get(
                f"{self.server_url}/api/users/{quote(peer_id, safe='')}/public-key",
                headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to get public key for user {peer_id}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise TransportError(f"Public key lookup for {peer_id} failed with status {response.status_code}")

        try:
            body = PublicKeyBody.model_validate(response.json())
        except (ValueError, ValidationError):
            raise TransportError(f"Unexpected public key response for {peer_id}") from None

        if not is_valid_public_key(body.publicKey):
            raise KeyImportError(f"User {peer_id} published an invalid public key")
        return b64decode(body.publicKey)

    async def publish_public_key(self, owner_id: str, public_key: bytes):
        """Upload our public key; repeating it with the same key is harmless"""
        body = PublicKeyBody(publicKey=b64encode(public_key))
        try:
            response = await self.http_client.put(
                f"{self.server_url}/api/users/public-key",
                json=body.model_dump(),
                headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to upload public key for {owner_id}") from e

        if response.status_code not in (200, 201, 204):
            raise TransportError(f"Public key upload for {owner_id} failed with status {response.status_code}")
        logger.info("Published public key for %s", owner_id)

    async def aclose(self):
        await self.http_client.aclose()


class InMemoryPeerKeyDirectory:
    """Dict-backed directory; counts calls so tests can check coalescing"""

    def __init__(self):
        self.keys: Dict[str, bytes] = {}
        self.fetch_count: Dict[str, int] = {}
        self.publish_count: Dict[str, int] = {}

    async def fetch_public_key(self, peer_id: str) -> Optional[bytes]:
        self.fetch_count[peer_id] = self.fetch_count.get(peer_id, 0) + 1
        return self.keys.get(peer_id)

    async def publish_public_key(self, owner_id: str, public_key: bytes):
        self.publish_count[owner_id] = self.publish_count.get(owner_id, 0) + 1
        self.keys[owner_id] = bytes(public_key)
