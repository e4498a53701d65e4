"""
AES-256-GCM message codec.

Produces and consumes the wire envelope. Every call to ``encrypt`` draws a
fresh random 96-bit IV; no counter-based nonces are used.
"""

from dataclasses import dataclass
from typing import Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import MalformedEnvelopeError
from .primitives import IV_SIZE, TAG_SIZE, aead_decrypt, aead_encrypt, b64decode, b64encode

SCHEME_VERSION = 1


@dataclass(frozen=True)
class EncryptedEnvelope:
    """
    One encrypted message. Carries no key material.

    Attributes:
        ciphertext: Encrypted payload without the tag
        iv: 12-byte nonce
        tag: 16-byte GCM authentication tag
        scheme_version: Format identifier
    """
    ciphertext: bytes
    iv: bytes
    tag: bytes
    scheme_version: int = SCHEME_VERSION

    def to_dict(self) -> Dict:
        """Convert to the base64 transport form"""
        return {
            'ciphertext': b64encode(self.ciphertext),
            'iv': b64encode(self.iv),
            'authTag': b64encode(self.tag),
            'version': self.scheme_version
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'EncryptedEnvelope':
        """
        Create from the base64 transport form.

        A missing version means the current scheme.
        """
        try:
            return cls(
                ciphertext=b64decode(data['ciphertext']),
                iv=b64decode(data['iv']),
                tag=b64decode(data['authTag']),
                scheme_version=int(data.get('version', SCHEME_VERSION))
            )
        except (KeyError, ValueError, TypeError):
            raise MalformedEnvelopeError("Envelope fields missing or not base64") from None


class AeadCodec:
    """Authenticated encryption of message payloads under a shared key"""

    def encrypt(self, plaintext: bytes, key: AESGCM) -> EncryptedEnvelope:
        """
        Encrypt `plaintext` under `key`.

        Args:
            plaintext: Message bytes
            key: AES-256-GCM key handle

        Returns:
            Envelope with a fresh random IV and the 16-byte tag split off
        """
        iv, ciphertext, tag = aead_encrypt(key, plaintext)
        return EncryptedEnvelope(ciphertext=ciphertext, iv=iv, tag=tag)

    def decrypt(self, envelope: EncryptedEnvelope, key: AESGCM) -> bytes:
        """
        Verify and decrypt an envelope.

        Raises:
            MalformedEnvelopeError: Wrong IV/tag length or unknown scheme version
            AuthenticationFailedError: Tag mismatch, corrupted data or wrong key
        """
        if envelope.scheme_version != SCHEME_VERSION:
            raise MalformedEnvelopeError(f"Unsupported envelope version {envelope.scheme_version}")
        if len(envelope.iv) != IV_SIZE:
            raise MalformedEnvelopeError("IV must be 12 bytes")
        if len(envelope.tag) != TAG_SIZE:
            raise MalformedEnvelopeError("Authentication tag must be 16 bytes")

        return aead_decrypt(key, envelope.iv, envelope.ciphertext, envelope.tag)
