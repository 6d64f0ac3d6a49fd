"""
canonical_json.py — Space record serialization
Deterministic JSON canonicalization for content-addressed records.

Canonical form:
- UTF-8 encoding
- Object keys sorted lexicographically by Unicode codepoint
- No insignificant whitespace
- No NaN/Infinity (raises ValueError)

Binary fields travel inside JSON as standard base64. Hashes shown to
humans and embedded in channel names use unpadded base64url, the same
text form peers use to name per-file channels.
"""

from __future__ import annotations
import base64
import binascii
import hashlib
import json
from typing import Any

from .errors import SerializationError


def canonical_dumps(obj: Any) -> str:
    """Return canonical JSON string with sorted keys and no whitespace."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(obj: Any) -> bytes:
    """Return canonical JSON as UTF-8 bytes."""
    return canonical_dumps(obj).encode("utf-8")


def canonical_loads(data: bytes) -> Any:
    """Parse canonical JSON bytes, raising ``SerializationError`` on garbage."""
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"invalid JSON payload: {e}") from e


def sha256_digest(data: bytes) -> bytes:
    """Return raw SHA-256 digest."""
    return hashlib.sha256(data).digest()


def canonical_hash(obj: Any) -> bytes:
    """Return raw SHA-256 digest of canonical JSON bytes."""
    return sha256_digest(canonical_bytes(obj))


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise SerializationError(f"invalid base64 field: {e}") from e


def encode_hash(digest: bytes) -> str:
    """Unpadded base64url text form of a hash."""
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def decode_hash(text: str) -> bytes:
    """Inverse of ``encode_hash``; tolerates missing padding."""
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise SerializationError(f"invalid hash text {text!r}: {e}") from e
