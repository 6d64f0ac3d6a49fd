"""
keys.py — Identity keys and access control lists

Implements:
  - Identity: an alias with an Ed25519 signing key and an X25519
    encryption key
  - Key serialization (base64-encoded raw keys)
  - Keyfile persistence under the client's keys directory
  - Acl: explicit alias -> X25519 public key mapping that always
    contains its owner

Private keys never enter a record. Public keys travel in the Alias
channel and in each record's signer field.
"""

from __future__ import annotations
import base64
import hashlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from .errors import AclError, SerializationError


# ---------------------------------------------------------------------------
# Raw key helpers
# ---------------------------------------------------------------------------

def public_bytes(key) -> bytes:
    """Raw bytes of an Ed25519 or X25519 public key."""
    return key.public_bytes(Encoding.Raw, PublicFormat.Raw)


def private_bytes(key) -> bytes:
    """Raw bytes of an Ed25519 or X25519 private key."""
    return key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())


def load_encryption_public_key(raw: bytes) -> X25519PublicKey:
    try:
        return X25519PublicKey.from_public_bytes(raw)
    except ValueError as e:
        raise SerializationError(f"invalid X25519 public key: {e}") from e


def load_signing_public_key(raw: bytes) -> Ed25519PublicKey:
    try:
        return Ed25519PublicKey.from_public_bytes(raw)
    except ValueError as e:
        raise SerializationError(f"invalid Ed25519 public key: {e}") from e


def key_id_from_public_bytes(pub_bytes: bytes) -> str:
    """
    Derive a stable key_id from raw public key bytes.
    Format: 'sp1_' + first 16 hex chars of SHA-256(pub_bytes).
    """
    digest = hashlib.sha256(pub_bytes).hexdigest()
    return f"sp1_{digest[:16]}"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@dataclass
class Identity:
    """An alias with its signing and encryption keypairs."""
    alias: str
    signing_key: Ed25519PrivateKey
    encryption_key: X25519PrivateKey

    @classmethod
    def generate(cls, alias: str) -> "Identity":
        if not alias:
            raise ValueError("alias must be a non-empty string")
        return cls(
            alias=alias,
            signing_key=Ed25519PrivateKey.generate(),
            encryption_key=X25519PrivateKey.generate(),
        )

    @property
    def signing_public_key(self) -> Ed25519PublicKey:
        return self.signing_key.public_key()

    @property
    def encryption_public_key(self) -> X25519PublicKey:
        return self.encryption_key.public_key()

    @property
    def key_id(self) -> str:
        return key_id_from_public_bytes(public_bytes(self.signing_public_key))

    def to_keyfile_entry(self) -> Dict[str, str]:
        """Keyfile JSON object. Holds private material; keep it off the chain."""
        return {
            "alias": self.alias,
            "key_id": self.key_id,
            "signing_private_key_b64": base64.b64encode(private_bytes(self.signing_key)).decode("ascii"),
            "encryption_private_key_b64": base64.b64encode(private_bytes(self.encryption_key)).decode("ascii"),
        }

    @classmethod
    def from_keyfile_entry(cls, entry: Dict[str, str]) -> "Identity":
        try:
            signing = Ed25519PrivateKey.from_private_bytes(
                base64.b64decode(entry["signing_private_key_b64"])
            )
            encryption = X25519PrivateKey.from_private_bytes(
                base64.b64decode(entry["encryption_private_key_b64"])
            )
            return cls(alias=entry["alias"], signing_key=signing, encryption_key=encryption)
        except (KeyError, ValueError, TypeError) as e:
            raise SerializationError(f"invalid keyfile entry: {e}") from e

    def acl(self) -> "Acl":
        """Owner-only ACL for records this identity writes."""
        return Acl(owner=self.alias, members={self.alias: self.encryption_public_key})


def save_identity(keys_directory: Path, identity: Identity) -> Path:
    """Write ``<alias>.json`` into the keys directory with owner-only permissions."""
    keys_directory.mkdir(parents=True, exist_ok=True)
    path = keys_directory / f"{identity.alias}.json"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(identity.to_keyfile_entry(), f, indent=2, sort_keys=True)
    return path


def load_identity(keys_directory: Path, alias: str) -> Identity:
    """Load ``<alias>.json``. Raises FileNotFoundError if the alias has no keyfile."""
    path = keys_directory / f"{alias}.json"
    with path.open("r", encoding="utf-8") as f:
        try:
            entry = json.load(f)
        except json.JSONDecodeError as e:
            raise SerializationError(f"keyfile {path} is not valid JSON: {e}") from e
    return Identity.from_keyfile_entry(entry)


# ---------------------------------------------------------------------------
# Access control list
# ---------------------------------------------------------------------------

@dataclass
class Acl:
    """Aliases allowed to decrypt a record, keyed to their X25519 public keys.

    The owner must always be a member; a record its own writer cannot
    read is never produced.
    """
    owner: str
    members: Dict[str, X25519PublicKey] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.owner not in self.members:
            raise AclError(context=f"owner={self.owner!r} members={sorted(self.members)}")

    def with_member(self, alias: str, public_key: X25519PublicKey) -> "Acl":
        members = dict(self.members)
        members[alias] = public_key
        return Acl(owner=self.owner, members=members)

    def __contains__(self, alias: object) -> bool:
        return alias in self.members

    def __iter__(self) -> Iterator[Tuple[str, X25519PublicKey]]:
        # Sorted so access entries serialize identically across runs.
        return iter(sorted(self.members.items()))

    def __len__(self) -> int:
        return len(self.members)
