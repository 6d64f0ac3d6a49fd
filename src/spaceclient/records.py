"""
records.py — Signed, referenced, optionally-encrypted records

A record is the unit written to a channel. Its hash is the SHA-256 of its
canonical JSON form (signature included) and is the record's permanent
content address. Blocks seal an ordered list of records onto a channel and
link to the previous block by hash.

Security model:
  - Every record carries the creator's Ed25519 public key and a detached
    signature over the canonical record without ``signature``.
  - Encrypted records carry one access entry per ACL member; each entry
    wraps the record's content key for that member.
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .canonical_json import b64decode, b64encode, canonical_bytes, canonical_hash, encode_hash
from .envelope import (
    KEY_WRAP_ALGORITHM,
    PAYLOAD_ALGORITHM,
    SIGNATURE_ALGORITHM,
    decrypt_payload,
    decrypt_record,
    encrypt_record,
    sign,
    verify,
)
from .errors import AccessDeniedError, InvalidSignatureError, SerializationError
from .keys import Acl, Identity, load_signing_public_key, public_bytes

UNENCRYPTED = "NONE"


def timestamp() -> int:
    """Nanoseconds since the epoch; the record clock."""
    return time.time_ns()


def _require(data: Dict[str, Any], key: str, kind: str) -> Any:
    try:
        return data[key]
    except (KeyError, TypeError):
        raise SerializationError(f"{kind} is missing required field {key!r}") from None


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Reference:
    """Points at a block and/or a record on a named channel."""
    timestamp: int
    channel_name: str
    block_hash: Optional[bytes] = None
    record_hash: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"timestamp": self.timestamp, "channel_name": self.channel_name}
        if self.block_hash is not None:
            d["block_hash"] = b64encode(self.block_hash)
        if self.record_hash is not None:
            d["record_hash"] = b64encode(self.record_hash)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reference":
        block_hash = data.get("block_hash") if isinstance(data, dict) else None
        record_hash = data.get("record_hash") if isinstance(data, dict) else None
        return cls(
            timestamp=int(_require(data, "timestamp", "reference")),
            channel_name=str(_require(data, "channel_name", "reference")),
            block_hash=b64decode(block_hash) if block_hash else None,
            record_hash=b64decode(record_hash) if record_hash else None,
        )

    def __str__(self) -> str:
        target = self.record_hash or self.block_hash
        return f"{self.channel_name}/{encode_hash(target) if target else '-'}"


@dataclass(frozen=True)
class AccessEntry:
    alias: str
    secret_key: bytes
    encryption_algorithm: str = KEY_WRAP_ALGORITHM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alias": self.alias,
            "secret_key": b64encode(self.secret_key),
            "encryption_algorithm": self.encryption_algorithm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessEntry":
        return cls(
            alias=str(_require(data, "alias", "access entry")),
            secret_key=b64decode(_require(data, "secret_key", "access entry")),
            encryption_algorithm=str(data.get("encryption_algorithm", KEY_WRAP_ALGORITHM)),
        )


@dataclass(frozen=True)
class Record:
    timestamp: int
    creator: str
    payload: bytes
    access: Tuple[AccessEntry, ...] = ()
    encryption_algorithm: str = UNENCRYPTED
    reference: Tuple[Reference, ...] = ()
    signer_key: bytes = b""
    signature: bytes = b""
    signature_algorithm: str = SIGNATURE_ALGORITHM

    def to_dict(self, include_signature: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "creator": self.creator,
            "payload": b64encode(self.payload),
            "access": [a.to_dict() for a in self.access],
            "encryption_algorithm": self.encryption_algorithm,
            "reference": [r.to_dict() for r in self.reference],
            "signer_key": b64encode(self.signer_key),
            "signature_algorithm": self.signature_algorithm,
        }
        if include_signature:
            d["signature"] = b64encode(self.signature)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        if not isinstance(data, dict):
            raise SerializationError(f"record must be a JSON object, got {type(data).__name__}")
        try:
            return cls(
                timestamp=int(_require(data, "timestamp", "record")),
                creator=str(_require(data, "creator", "record")),
                payload=b64decode(_require(data, "payload", "record")),
                access=tuple(AccessEntry.from_dict(a) for a in data.get("access", [])),
                encryption_algorithm=str(data.get("encryption_algorithm", UNENCRYPTED)),
                reference=tuple(Reference.from_dict(r) for r in data.get("reference", [])),
                signer_key=b64decode(data.get("signer_key", "")),
                signature=b64decode(data.get("signature", "")),
                signature_algorithm=str(data.get("signature_algorithm", SIGNATURE_ALGORITHM)),
            )
        except (TypeError, ValueError) as e:
            raise SerializationError(f"malformed record: {e}") from e

    @property
    def encrypted(self) -> bool:
        return self.encryption_algorithm != UNENCRYPTED

    def hash(self) -> bytes:
        return canonical_hash(self.to_dict())

    def access_for(self, alias: str) -> Optional[AccessEntry]:
        for entry in self.access:
            if entry.alias == alias:
                return entry
        return None

    def references_hash(self, record_hash: bytes) -> bool:
        return any(r.record_hash == record_hash for r in self.reference)


@dataclass(frozen=True)
class BlockEntry:
    """A record together with where it was found on the chain."""
    record_hash: bytes
    record: Record
    block_hash: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"record_hash": b64encode(self.record_hash), "record": self.record.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], block_hash: Optional[bytes] = None) -> "BlockEntry":
        return cls(
            record_hash=b64decode(_require(data, "record_hash", "block entry")),
            record=Record.from_dict(_require(data, "record", "block entry")),
            block_hash=block_hash,
        )


@dataclass(frozen=True)
class Block:
    timestamp: int
    channel_name: str
    length: int
    previous: Optional[bytes]
    miner: str
    entry: Tuple[BlockEntry, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "channel_name": self.channel_name,
            "length": self.length,
            "previous": b64encode(self.previous) if self.previous else None,
            "miner": self.miner,
            "entry": [e.to_dict() for e in self.entry],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        if not isinstance(data, dict):
            raise SerializationError("block must be a JSON object")
        previous = data.get("previous")
        block = cls(
            timestamp=int(_require(data, "timestamp", "block")),
            channel_name=str(_require(data, "channel_name", "block")),
            length=int(_require(data, "length", "block")),
            previous=b64decode(previous) if previous else None,
            miner=str(data.get("miner", "")),
        )
        h = block_hash_of(data)
        return replace(block, entry=tuple(BlockEntry.from_dict(e, h) for e in data.get("entry", [])))

    def hash(self) -> bytes:
        return block_hash_of(self.to_dict())


def block_hash_of(block_dict: Dict[str, Any]) -> bytes:
    return canonical_hash(block_dict)


# ---------------------------------------------------------------------------
# Record creation
# ---------------------------------------------------------------------------

def create_record(
    ts: int,
    identity: Identity,
    acl: Optional[Acl],
    references: Optional[List[Reference]],
    payload: bytes,
) -> Tuple[Optional[bytes], Record]:
    """
    Build and sign a record.

    When ``acl`` is None the payload is stored in the clear. Otherwise a
    fresh content key encrypts it and is wrapped for every ACL member.

    Returns ``(content_key_or_None, record)``.
    """
    key: Optional[bytes] = None
    access: Tuple[AccessEntry, ...] = ()
    algorithm = UNENCRYPTED
    if acl is not None:
        key, payload, wrapped = encrypt_record(payload, acl)
        access = tuple(AccessEntry(alias, wk) for alias, wk in sorted(wrapped.items()))
        algorithm = PAYLOAD_ALGORITHM

    unsigned = Record(
        timestamp=ts,
        creator=identity.alias,
        payload=payload,
        access=access,
        encryption_algorithm=algorithm,
        reference=tuple(references or ()),
        signer_key=public_bytes(identity.signing_public_key),
    )
    sig = sign(identity.signing_key, canonical_bytes(unsigned.to_dict(include_signature=False)))
    record = replace(unsigned, signature=sig)
    return key, record


def verify_record(record: Record) -> None:
    """Raise ``InvalidSignatureError`` unless the record's signature holds."""
    if not record.signature or not record.signer_key:
        raise InvalidSignatureError(context=f"record by {record.creator!r} is unsigned")
    pub = load_signing_public_key(record.signer_key)
    if not verify(pub, record.signature, canonical_bytes(record.to_dict(include_signature=False))):
        raise InvalidSignatureError(context=f"record by {record.creator!r} at {record.timestamp}")


# ---------------------------------------------------------------------------
# Record decryption
# ---------------------------------------------------------------------------

def open_record(record: Record, identity: Identity) -> Tuple[Optional[bytes], bytes]:
    """
    Decrypt a record for ``identity``.

    Returns ``(content_key_or_None, payload)``. Raises ``AccessDeniedError``
    when the record is encrypted and has no access entry for the alias,
    and ``DecryptError`` when the entry exists but does not open.
    """
    if not record.encrypted:
        return None, record.payload
    entry = record.access_for(identity.alias)
    if entry is None:
        raise AccessDeniedError(context=f"alias={identity.alias!r} creator={record.creator!r}")
    return decrypt_record(record.payload, entry.secret_key, identity.encryption_key)


def open_record_with_key(record: Record, key: Optional[bytes]) -> bytes:
    """Decrypt a record with a raw content key obtained out of band (a Share)."""
    if not record.encrypted:
        return record.payload
    if key is None:
        raise AccessDeniedError(context=f"no shared key for record by {record.creator!r}")
    return decrypt_payload(key, record.payload)
