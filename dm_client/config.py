"""
Client settings.

Defaults match a local development server; every value can be overridden
through the environment.
"""

import os
from dataclasses import dataclass

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class ClientSettings:
    """
    Attributes:
        server_url: Base URL of the chat server hosting the key directory
        storage_dir: Directory for the local identity key database
        http_timeout: Directory request timeout in seconds
        harden_with_hkdf: Derive AES keys through HKDF instead of raw ECDH
            output; every participant must use the same setting
    """
    server_url: str = "http://localhost:8000"
    storage_dir: str = "client_data"
    http_timeout: float = 10.0
    harden_with_hkdf: bool = False

    @classmethod
    def from_env(cls) -> "ClientSettings":
        return cls(
            server_url=os.getenv("SECURECHAT_SERVER_URL", cls.server_url),
            storage_dir=os.getenv("SECURECHAT_STORAGE_DIR", cls.storage_dir),
            http_timeout=float(os.getenv("SECURECHAT_HTTP_TIMEOUT", str(cls.http_timeout))),
            harden_with_hkdf=os.getenv("SECURECHAT_HKDF", "0").strip().lower() in _TRUTHY,
        )
