"""
Cryptographic Primitives for End-to-End Encryption

This module provides the foundational cryptographic operations used by the
direct-message encryption engine: P-256 ECDH key agreement and AES-256-GCM
authenticated encryption. Backend exceptions are translated into the
engine's own error types here so nothing above this layer sees them.
"""

import base64
import binascii
import hmac
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import (
    AuthenticationFailedError,
    KeyGenerationError,
    KeyImportError,
    MalformedEnvelopeError,
)

CURVE = ec.SECP256R1()

IV_SIZE = 12
TAG_SIZE = 16
AES_KEY_SIZE = 32

UNCOMPRESSED_POINT_SIZE = 65
COMPRESSED_POINT_SIZE = 33

HKDF_INFO = b"securechat/dm/v1"


def generate_ecdh_keypair() -> Tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
    """
    Generate a P-256 keypair for ECDH key agreement.

    Returns:
        Tuple of (private_key, public_key)

    Raises:
        KeyGenerationError: If the backend cannot produce a key
    """
    try:
        private_key = ec.generate_private_key(CURVE)
    except (UnsupportedAlgorithm, ValueError):
        raise KeyGenerationError("Cryptography initialization failed") from None
    return private_key, private_key.public_key()


def ecdh_exchange(private_key: ec.EllipticCurvePrivateKey, public_key: ec.EllipticCurvePublicKey) -> bytes:
    """
    Perform Elliptic-Curve Diffie-Hellman key exchange.

    Args:
        private_key: Our private key
        public_key: Their public key

    Returns:
        32-byte shared secret (the x-coordinate of the shared point)
    """
    try:
        return private_key.exchange(ec.ECDH(), public_key)
    except ValueError:
        raise KeyImportError("Peer public key cannot be used for key agreement") from None


def hkdf_derive(shared_secret: bytes, info: bytes = HKDF_INFO) -> bytes:
    """
    Stretch an ECDH secret into an AES-256 key with HKDF-SHA256.

    Args:
        shared_secret: Raw ECDH output
        info: Protocol context string

    Returns:
        32-byte key
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=AES_KEY_SIZE,
        salt=None,
        info=info
    )
    return hkdf.derive(shared_secret)


def import_aead_key(key: bytes) -> AESGCM:
    """Wrap 32 raw bytes as an AES-256-GCM key handle"""
    if len(key) != AES_KEY_SIZE:
        raise KeyImportError("AES-256 key must be 32 bytes")
    return AESGCM(key)


def aead_encrypt(key: AESGCM, plaintext: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Encrypt a message using AES-256-GCM with no associated data.

    Args:
        key: AES-256-GCM key handle
        plaintext: Message to encrypt

    Returns:
        Tuple of (iv, ciphertext, tag); iv is 12 random bytes, tag is 16 bytes
    """
    iv = os.urandom(IV_SIZE)
    combined = key.encrypt(iv, plaintext, None)
    # AESGCM returns ciphertext || tag
    return iv, combined[:-TAG_SIZE], combined[-TAG_SIZE:]


def aead_decrypt(key: AESGCM, iv: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    """
    Decrypt a message using AES-256-GCM.

    Args:
        key: AES-256-GCM key handle
        iv: 12-byte nonce used at encryption
        ciphertext: Encrypted message without the tag
        tag: 16-byte authentication tag

    Returns:
        Decrypted plaintext

    Raises:
        MalformedEnvelopeError: If iv or tag have the wrong length
        AuthenticationFailedError: If the tag does not verify
    """
    if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
        raise MalformedEnvelopeError("IV must be 12 bytes and tag 16 bytes")

    try:
        return key.decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise AuthenticationFailedError() from None


def serialize_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Serialize a P-256 public key to the 65-byte uncompressed point"""
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint
    )


def deserialize_public_key(key_bytes: bytes) -> ec.EllipticCurvePublicKey:
    """Deserialize an uncompressed or compressed P-256 point"""
    if len(key_bytes) not in (UNCOMPRESSED_POINT_SIZE, COMPRESSED_POINT_SIZE):
        raise KeyImportError(f"Invalid P-256 public key length: {len(key_bytes)}")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, bytes(key_bytes))
    except ValueError:
        raise KeyImportError("Invalid P-256 public key") from None


def serialize_private_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Serialize a private key to unencrypted PKCS#8 DER"""
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def deserialize_private_key(key_bytes: bytes) -> ec.EllipticCurvePrivateKey:
    """Deserialize a PKCS#8 DER private key and check it is on P-256"""
    try:
        private_key = serialization.load_der_private_key(key_bytes, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        raise KeyImportError("Stored private key could not be decoded") from None

    if not isinstance(private_key, ec.EllipticCurvePrivateKey) or private_key.curve.name != CURVE.name:
        raise KeyImportError("Stored private key is not a P-256 key")
    return private_key


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Strict base64 decode; raises ValueError on bad input"""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError("invalid base64") from e


def is_valid_public_key(public_key_b64: str) -> bool:
    """
    Check that a base64 string decodes to a usable P-256 point.

    Both the 65-byte uncompressed and 33-byte compressed encodings are accepted.
    """
    if not public_key_b64 or not isinstance(public_key_b64, str):
        return False
    try:
        deserialize_public_key(b64decode(public_key_b64))
    except (ValueError, KeyImportError):
        return False
    return True


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Constant-time comparison to prevent timing attacks.

    Args:
        a: First byte string
        b: Second byte string

    Returns:
        True if equal, False otherwise
    """
    return hmac.compare_digest(a, b)
