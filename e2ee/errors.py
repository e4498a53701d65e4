"""
Exceptions raised by the encryption engine.

Messages are fixed strings or carry identifiers only. Key material, derived
secrets and backend exception text never end up in an error message.
"""


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class NotInitializedError(CryptoError):
    """No identity key pair is loaded"""
    pass


class KeyGenerationError(CryptoError):
    """The key pair could not be generated"""
    pass


class KeyImportError(CryptoError):
    """Key bytes are malformed or have the wrong length for the curve"""
    pass


class StorageError(CryptoError):
    """Local key persistence failed"""
    pass


class PeerNotEncryptionReadyError(CryptoError):
    """The peer has not published a public key"""

    def __init__(self, peer_id: str):
        super().__init__(f"User {peer_id} has not set up encryption yet")
        self.peer_id = peer_id


class MalformedEnvelopeError(CryptoError):
    """Envelope fields have the wrong length or encoding"""
    pass


class AuthenticationFailedError(CryptoError):
    """Tag verification failed: corrupted ciphertext, bad tag or wrong key"""

    def __init__(self):
        super().__init__("Failed to decrypt message. Message may be corrupted or key mismatch.")


class TransportError(CryptoError):
    """The key directory could not be reached or answered unexpectedly"""
    pass
