"""
Client-side collaborators for the encryption engine: key storage, the HTTP
key directory, message payloads and the per-login session.
"""

from .config import ClientSettings
from .directory import HttpPeerKeyDirectory, InMemoryPeerKeyDirectory
from .messages import MessagePayload, counterparty_id, open_message, seal_message
from .session import EncryptionSession
from .storage import InsecureMemoryKeyStorage, InsecureSqliteKeyStorage

__all__ = [
    'ClientSettings',
    'HttpPeerKeyDirectory',
    'InMemoryPeerKeyDirectory',
    'MessagePayload',
    'counterparty_id',
    'open_message',
    'seal_message',
    'EncryptionSession',
    'InsecureMemoryKeyStorage',
    'InsecureSqliteKeyStorage'
]
