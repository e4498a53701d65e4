#!/usr/bin/env python3
"""
Tests for cryptographic primitives, the envelope codec and identity keys.
"""

import dataclasses
import os
import sys

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from e2ee.codec import SCHEME_VERSION, AeadCodec, EncryptedEnvelope
from e2ee.errors import (
    AuthenticationFailedError,
    KeyImportError,
    MalformedEnvelopeError,
    NotInitializedError,
    StorageError,
)
from e2ee.identity import IdentityKeyStore
from e2ee.primitives import (
    b64encode,
    ecdh_exchange,
    generate_ecdh_keypair,
    hkdf_derive,
    import_aead_key,
    is_valid_public_key,
    serialize_public_key,
)
from dm_client.storage import InsecureMemoryKeyStorage


class BrokenStorage:
    """Storage whose disk is gone"""

    def get(self, owner_id):
        raise OSError("disk unavailable")

    def put(self, owner_id, data):
        raise OSError("disk unavailable")

    def delete(self, owner_id):
        raise OSError("disk unavailable")


class ExplodingKey:
    """Stands in for a key handle; fails the test if the primitive is reached"""

    def decrypt(self, nonce, data, associated_data):
        raise AssertionError("decrypt primitive must not be called")


def _flip_bit(data: bytes, bit: int) -> bytes:
    buf = bytearray(data)
    buf[bit // 8] ^= 1 << (bit % 8)
    return bytes(buf)


def test_ecdh_exchange():
    """Test Diffie-Hellman key exchange"""
    print("Testing ECDH exchange...")

    # Alice generates keypair
    alice_private, alice_public = generate_ecdh_keypair()

    # Bob generates keypair
    bob_private, bob_public = generate_ecdh_keypair()

    # Both compute shared secret
    alice_shared = ecdh_exchange(alice_private, bob_public)
    bob_shared = ecdh_exchange(bob_private, alice_public)

    # Shared secrets should match
    assert alice_shared == bob_shared, "ECDH exchange failed"
    assert len(alice_shared) == 32, "Wrong shared secret length"

    print("✓ ECDH exchange works")


def test_public_key_export():
    """Test public key encodings"""
    print("Testing public key export...")

    _, public = generate_ecdh_keypair()
    raw = serialize_public_key(public)
    compressed = public.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint
    )

    assert len(raw) == 65 and raw[0] == 0x04, "Expected uncompressed point"
    assert is_valid_public_key(b64encode(raw))
    assert is_valid_public_key(b64encode(compressed))
    assert not is_valid_public_key(b64encode(raw[:64]))
    assert not is_valid_public_key(b64encode(b"\x04" + b"\x00" * 64))
    assert not is_valid_public_key("not base64!")
    assert not is_valid_public_key("")

    print("✓ Public key export works")


def test_encryption():
    """Test envelope encryption"""
    print("Testing encryption...")

    key = import_aead_key(os.urandom(32))
    codec = AeadCodec()
    plaintext = b"Hello, World!"

    envelope = codec.encrypt(plaintext, key)
    decrypted = codec.decrypt(envelope, key)

    assert decrypted == plaintext, "Decryption failed"
    assert envelope.ciphertext != plaintext, "Ciphertext equals plaintext"
    assert envelope.scheme_version == SCHEME_VERSION

    # Test authentication
    wrong_key = import_aead_key(os.urandom(32))
    with pytest.raises(AuthenticationFailedError):
        codec.decrypt(envelope, wrong_key)

    print("✓ Encryption/decryption works")


def test_envelope_layout():
    """ciphertext + tag must be exactly what AES-GCM produced"""
    raw_key = os.urandom(32)
    codec = AeadCodec()
    plaintext = b"layout check"

    envelope = codec.encrypt(plaintext, import_aead_key(raw_key))

    assert len(envelope.iv) == 12
    assert len(envelope.tag) == 16
    assert len(envelope.ciphertext) == len(plaintext)
    assert AESGCM(raw_key).encrypt(envelope.iv, plaintext, None) == envelope.ciphertext + envelope.tag


def test_empty_plaintext():
    key = import_aead_key(os.urandom(32))
    codec = AeadCodec()

    envelope = codec.encrypt(b"", key)

    assert envelope.ciphertext == b""
    assert codec.decrypt(envelope, key) == b""


def test_tamper_detection():
    """Every single-bit flip in ciphertext or tag must fail authentication"""
    print("Testing tamper detection...")

    key = import_aead_key(os.urandom(32))
    codec = AeadCodec()
    envelope = codec.encrypt(b"hello", key)

    for bit in range(len(envelope.ciphertext) * 8):
        tampered = dataclasses.replace(envelope, ciphertext=_flip_bit(envelope.ciphertext, bit))
        with pytest.raises(AuthenticationFailedError):
            codec.decrypt(tampered, key)

    for bit in range(len(envelope.tag) * 8):
        tampered = dataclasses.replace(envelope, tag=_flip_bit(envelope.tag, bit))
        with pytest.raises(AuthenticationFailedError):
            codec.decrypt(tampered, key)

    tampered = dataclasses.replace(envelope, iv=_flip_bit(envelope.iv, 0))
    with pytest.raises(AuthenticationFailedError):
        codec.decrypt(tampered, key)

    print("✓ Tamper detection works")


def test_authentication_error_hides_details():
    key = import_aead_key(os.urandom(32))
    codec = AeadCodec()
    envelope = codec.encrypt(b"secret text", key)

    with pytest.raises(AuthenticationFailedError) as exc:
        codec.decrypt(envelope, import_aead_key(os.urandom(32)))

    assert "secret" not in str(exc.value)
    assert exc.value.__cause__ is None
    assert exc.value.__suppress_context__


def test_iv_uniqueness():
    """No IV repeats across 10,000 encryptions under one key"""
    print("Testing IV uniqueness...")

    key = import_aead_key(os.urandom(32))
    codec = AeadCodec()

    ivs = {codec.encrypt(b"x", key).iv for _ in range(10_000)}

    # 96-bit random IVs: collision probability at 10^4 draws is ~6e-22
    assert len(ivs) == 10_000

    print("✓ IVs are unique")


@pytest.mark.parametrize("iv_len, tag_len", [(11, 16), (13, 16), (0, 16), (12, 15), (12, 17), (12, 0)])
def test_malformed_envelope_rejected_before_primitive(iv_len, tag_len):
    envelope = EncryptedEnvelope(ciphertext=b"abc", iv=b"\x00" * iv_len, tag=b"\x00" * tag_len)

    with pytest.raises(MalformedEnvelopeError):
        AeadCodec().decrypt(envelope, ExplodingKey())


def test_unknown_scheme_version_rejected():
    envelope = EncryptedEnvelope(ciphertext=b"abc", iv=b"\x00" * 12, tag=b"\x00" * 16, scheme_version=99)

    with pytest.raises(MalformedEnvelopeError):
        AeadCodec().decrypt(envelope, ExplodingKey())


def test_envelope_wire_form():
    """Test base64 transport encoding"""
    key = import_aead_key(os.urandom(32))
    codec = AeadCodec()
    envelope = codec.encrypt(b"over the wire", key)

    wire = envelope.to_dict()
    assert set(wire) == {'ciphertext', 'iv', 'authTag', 'version'}
    assert all(isinstance(wire[k], str) for k in ('ciphertext', 'iv', 'authTag'))

    restored = EncryptedEnvelope.from_dict(wire)
    assert restored == envelope

    # Payloads from older senders carry no version
    legacy = {k: wire[k] for k in ('ciphertext', 'iv', 'authTag')}
    assert codec.decrypt(EncryptedEnvelope.from_dict(legacy), key) == b"over the wire"


@pytest.mark.parametrize("broken", [
    {'iv': 'AAAAAAAAAAAAAAAA', 'authTag': 'AAAAAAAAAAAAAAAAAAAAAA=='},
    {'ciphertext': 'abc!', 'iv': 'AAAAAAAAAAAAAAAA', 'authTag': 'AAAAAAAAAAAAAAAAAAAAAA=='},
    {'ciphertext': '', 'iv': None, 'authTag': 'AAAAAAAAAAAAAAAAAAAAAA=='},
])
def test_envelope_from_bad_dict(broken):
    with pytest.raises(MalformedEnvelopeError):
        EncryptedEnvelope.from_dict(broken)


def test_hkdf():
    """Test key derivation function"""
    print("Testing KDF...")

    secret = os.urandom(32)

    key = hkdf_derive(secret)
    assert len(key) == 32, "Wrong key length"
    assert key != secret
    assert hkdf_derive(secret) == key, "HKDF must be deterministic"
    assert hkdf_derive(secret, info=b"other context") != key

    with pytest.raises(KeyImportError):
        import_aead_key(key[:16])

    print("✓ KDF works")


def test_identity_reload_restores_both_halves():
    """Test persist/reload of the identity key"""
    print("Testing identity persistence...")

    storage = InsecureMemoryKeyStorage()
    store = IdentityKeyStore(storage)

    pair = store.initialize()
    published = store.export_public_key(pair)
    store.persist(pair, "alice")
    store.clear()

    reloaded = store.reload("alice")

    assert reloaded is not None
    assert reloaded.private_key is not None
    assert store.export_public_key(reloaded) == published
    assert store.export_public_key() == published
    assert store.current is reloaded

    print("✓ Identity persistence works")


def test_identity_repr_hides_private_key():
    pair = IdentityKeyStore(InsecureMemoryKeyStorage()).initialize()

    assert "private_key" not in repr(pair)


def test_identity_initialize_generates_new_pairs():
    store = IdentityKeyStore(InsecureMemoryKeyStorage())

    first = store.initialize()
    second = store.initialize()

    assert first.public_key_bytes != second.public_key_bytes
    assert store.current is second


def test_identity_persist_overwrites():
    storage = InsecureMemoryKeyStorage()
    store = IdentityKeyStore(storage)

    store.persist(store.initialize(), "alice")
    newer = store.initialize()
    store.persist(newer, "alice")
    store.clear()

    assert store.reload("alice").public_key_bytes == newer.public_key_bytes


def test_identity_load_and_generate_leave_active_pair():
    storage = InsecureMemoryKeyStorage()
    store = IdentityKeyStore(storage)
    store.persist(store.generate(), "alice")

    assert not store.is_initialized
    loaded = store.load("alice")
    assert loaded is not None
    assert not store.is_initialized

    assert store.activate(loaded) is store.current


def test_identity_reload_missing():
    store = IdentityKeyStore(InsecureMemoryKeyStorage())

    assert store.reload("nobody") is None
    assert not store.is_initialized


def test_identity_reload_corrupt_key():
    storage = InsecureMemoryKeyStorage()
    storage.put("alice", b"definitely not pkcs8")

    with pytest.raises(KeyImportError):
        IdentityKeyStore(storage).reload("alice")


def test_identity_clear():
    store = IdentityKeyStore(InsecureMemoryKeyStorage())
    store.initialize()
    store.clear()

    with pytest.raises(NotInitializedError):
        store.current
    with pytest.raises(NotInitializedError):
        store.export_public_key()


def test_identity_storage_failure():
    store = IdentityKeyStore(BrokenStorage())
    pair = store.initialize()

    with pytest.raises(StorageError):
        store.persist(pair, "alice")
    with pytest.raises(StorageError):
        store.reload("alice")


def run_all_tests():
    """Run the main checks without pytest"""
    print("\n" + "="*50)
    print("Running Cryptographic Tests")
    print("="*50 + "\n")

    try:
        test_ecdh_exchange()
        test_public_key_export()
        test_encryption()
        test_tamper_detection()
        test_iv_uniqueness()
        test_hkdf()
        test_identity_reload_restores_both_halves()

        print("\n" + "="*50)
        print("✓ All tests passed!")
        print("="*50 + "\n")
        return 0

    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run_all_tests())
