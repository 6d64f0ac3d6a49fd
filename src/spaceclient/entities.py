"""
entities.py — File protocol payloads and channel naming

Payload types carried inside records:
  - Meta:  a logical file (name, MIME type, initial size)
  - Delta: one edit (offset, delete count, inserted bytes)
  - Share: raw content keys for a Meta and its chunks/deltas
  - Tag:   one free-text label

Per-file channels are keyed by the Meta's record hash in unpadded
base64url, so any client holding the hash can find them.
"""

from __future__ import annotations
import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

from .canonical_json import b64decode, b64encode, canonical_bytes, canonical_loads, encode_hash
from .errors import SerializationError
from .records import Reference

ALIAS_CHANNEL = "Alias"
META_CHANNEL_PREFIX = "Space-Meta-"
FILE_CHANNEL_PREFIX = "Space-File-"
DELTA_CHANNEL_PREFIX = "Space-Delta-"
TAG_CHANNEL_PREFIX = "Space-Tag-"
SHARE_CHANNEL_PREFIX = "Space-Share-"


def meta_channel_name(alias: str) -> str:
    return META_CHANNEL_PREFIX + alias


def file_channel_name(alias: str) -> str:
    return FILE_CHANNEL_PREFIX + alias


def delta_channel_name(meta_id: bytes) -> str:
    return DELTA_CHANNEL_PREFIX + encode_hash(meta_id)


def tag_channel_name(meta_id: bytes) -> str:
    return TAG_CHANNEL_PREFIX + encode_hash(meta_id)


def share_channel_name(alias: str) -> str:
    return SHARE_CHANNEL_PREFIX + alias


T = TypeVar("T", bound="Entity")


class Entity(abc.ABC):
    """Canonical-JSON payload with strict decoding."""

    kind = "entity"

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]: ...

    @classmethod
    @abc.abstractmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T: ...

    def serialize(self) -> bytes:
        return canonical_bytes(self.to_dict())

    @classmethod
    def parse(cls: Type[T], payload: bytes) -> T:
        data = canonical_loads(payload)
        if not isinstance(data, dict):
            raise SerializationError(f"{cls.kind} payload must be a JSON object")
        try:
            return cls.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"payload is not a valid {cls.kind}: {e!r}") from e


@dataclass(frozen=True)
class Meta(Entity):
    name: str
    type: str
    size: int = 0

    kind = "meta"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "size": self.size}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Meta":
        size = data.get("size", 0)
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            raise ValueError(f"size must be a non-negative integer, got {size!r}")
        return cls(name=str(data["name"]), type=str(data["type"]), size=size)


@dataclass(frozen=True)
class Delta(Entity):
    offset: int = 0
    delete: int = 0
    insert: bytes = b""

    kind = "delta"

    def to_dict(self) -> Dict[str, Any]:
        return {"offset": self.offset, "delete": self.delete, "insert": b64encode(self.insert)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Delta":
        offset = data.get("offset", 0)
        delete = data.get("delete", 0)
        for name, value in (("offset", offset), ("delete", delete)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"{name} must be an integer, got {value!r}")
        return cls(offset=offset, delete=delete, insert=b64decode(data.get("insert", "")))


@dataclass(frozen=True)
class Share(Entity):
    """Raw keys granting a recipient read access to one Meta.

    ``chunk_key`` is parallel to the Meta record's reference list.
    ``delta_key`` maps delta record hashes (base64url) to their keys for
    the deltas that existed when the share was written.
    """
    meta_reference: Reference
    meta_key: Optional[bytes]
    chunk_key: List[Optional[bytes]] = field(default_factory=list)
    delta_key: Dict[str, Optional[bytes]] = field(default_factory=dict)

    kind = "share"

    def to_dict(self) -> Dict[str, Any]:
        def enc(key: Optional[bytes]) -> Optional[str]:
            return b64encode(key) if key is not None else None

        return {
            "meta_reference": self.meta_reference.to_dict(),
            "meta_key": enc(self.meta_key),
            "chunk_key": [enc(k) for k in self.chunk_key],
            "delta_key": {h: enc(k) for h, k in self.delta_key.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Share":
        def dec(text: Optional[str]) -> Optional[bytes]:
            return b64decode(text) if text is not None else None

        return cls(
            meta_reference=Reference.from_dict(data["meta_reference"]),
            meta_key=dec(data.get("meta_key")),
            chunk_key=[dec(k) for k in data.get("chunk_key", [])],
            delta_key={str(h): dec(k) for h, k in dict(data.get("delta_key", {})).items()},
        )


@dataclass(frozen=True)
class Tag(Entity):
    value: str

    kind = "tag"

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tag":
        return cls(value=str(data["value"]))
