"""
End-to-end encryption engine for direct messages.

Implements a static pairwise scheme:
- P-256 ECDH identity keys, one long-term pair per participant
- One shared AES-256-GCM key per peer pair, derived on demand and cached
- Authenticated envelopes {ciphertext, iv, authTag} with a random 96-bit IV
"""

from .codec import AeadCodec, EncryptedEnvelope
from .engine import DECRYPTION_FAILED_TEXT, CryptoEngine, EngineState
from .errors import (
    AuthenticationFailedError,
    CryptoError,
    KeyGenerationError,
    KeyImportError,
    MalformedEnvelopeError,
    NotInitializedError,
    PeerNotEncryptionReadyError,
    StorageError,
    TransportError,
)
from .identity import IdentityKeyPair, IdentityKeyStore
from .interfaces import LocalKeyStorage, PeerKeyDirectory
from .shared_keys import SharedSecretCache

__all__ = [
    'AeadCodec',
    'EncryptedEnvelope',
    'CryptoEngine',
    'EngineState',
    'DECRYPTION_FAILED_TEXT',
    'IdentityKeyPair',
    'IdentityKeyStore',
    'SharedSecretCache',
    'LocalKeyStorage',
    'PeerKeyDirectory',
    'CryptoError',
    'NotInitializedError',
    'KeyGenerationError',
    'KeyImportError',
    'StorageError',
    'PeerNotEncryptionReadyError',
    'MalformedEnvelopeError',
    'AuthenticationFailedError',
    'TransportError'
]
