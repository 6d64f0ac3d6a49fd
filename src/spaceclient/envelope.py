"""
envelope.py — Per-record encryption and per-recipient key wrapping

Every encrypted record gets a fresh AES-256-GCM content key. That key is
wrapped once for each ACL member with an ephemeral X25519 exchange:

    wrapped = ephemeral_pub(32) || nonce(12) || AESGCM(HKDF(ECDH), key)

Sharing re-wraps the raw content key for a new recipient, so file bytes
are never decrypted and re-encrypted to grant access.
"""

from __future__ import annotations
import os
from typing import Dict, Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import DecryptError
from .keys import Acl, load_encryption_public_key, public_bytes

PAYLOAD_ALGORITHM = "AES_256_GCM"
KEY_WRAP_ALGORITHM = "X25519_HKDF_SHA256_AES_256_GCM"
SIGNATURE_ALGORITHM = "ED25519"

KEY_SIZE = 32
NONCE_SIZE = 12
_WRAP_INFO = b"spaceclient-key-wrap-v1"


def generate_content_key() -> bytes:
    return AESGCM.generate_key(bit_length=256)


def encrypt_payload(key: bytes, payload: bytes) -> bytes:
    """Encrypt with AES-GCM. Returns ``nonce || ciphertext``."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, payload, None)


def decrypt_payload(key: bytes, data: bytes) -> bytes:
    if len(key) != KEY_SIZE:
        raise DecryptError(context=f"content key has {len(key)} bytes, expected {KEY_SIZE}")
    if len(data) < NONCE_SIZE:
        raise DecryptError(context="encrypted payload shorter than nonce")
    nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptError(context="payload authentication tag mismatch") from e


def _derive_wrap_key(shared_secret: bytes, ephemeral_pub: bytes, recipient_pub: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=ephemeral_pub + recipient_pub,
        info=_WRAP_INFO,
    ).derive(shared_secret)


def wrap_key(key: bytes, recipient: X25519PublicKey) -> bytes:
    """Wrap a content key so only the holder of ``recipient``'s private key can unwrap it."""
    ephemeral = X25519PrivateKey.generate()
    ephemeral_pub = public_bytes(ephemeral.public_key())
    wrap = _derive_wrap_key(ephemeral.exchange(recipient), ephemeral_pub, public_bytes(recipient))
    return ephemeral_pub + encrypt_payload(wrap, key)


def unwrap_key(wrapped: bytes, private_key: X25519PrivateKey) -> bytes:
    if len(wrapped) < KEY_SIZE + NONCE_SIZE:
        raise DecryptError(context="wrapped key is truncated")
    ephemeral_pub = wrapped[:KEY_SIZE]
    try:
        shared = private_key.exchange(load_encryption_public_key(ephemeral_pub))
    except ValueError as e:
        raise DecryptError(context=f"key exchange failed: {e}") from e
    wrap = _derive_wrap_key(shared, ephemeral_pub, public_bytes(private_key.public_key()))
    try:
        return decrypt_payload(wrap, wrapped[KEY_SIZE:])
    except DecryptError as e:
        raise DecryptError(context="wrapped key does not belong to this identity") from e


def encrypt_record(payload: bytes, acl: Acl) -> Tuple[bytes, bytes, Dict[str, bytes]]:
    """
    Encrypt a payload for every member of ``acl``.

    Returns:
        (content_key, encrypted_payload, {alias: wrapped_key})
    """
    key = generate_content_key()
    encrypted = encrypt_payload(key, payload)
    wrapped = {alias: wrap_key(key, pub) for alias, pub in acl}
    return key, encrypted, wrapped


def decrypt_record(
    encrypted_payload: bytes,
    wrapped_key: bytes,
    private_key: X25519PrivateKey,
) -> Tuple[bytes, bytes]:
    """Unwrap one identity's key and decrypt. Returns ``(content_key, payload)``."""
    key = unwrap_key(wrapped_key, private_key)
    return key, decrypt_payload(key, encrypted_payload)


def sign(private_key: Ed25519PrivateKey, data: bytes) -> bytes:
    return private_key.sign(data)


def verify(public_key: Ed25519PublicKey, signature: bytes, data: bytes) -> bool:
    """Return True if valid, False otherwise. Never raises on a bad signature."""
    try:
        public_key.verify(signature, data)
        return True
    except InvalidSignature:
        return False
