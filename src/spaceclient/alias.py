"""
alias.py — Alias registration and public key resolution

The ``Alias`` channel binds human-readable aliases to public keys. Records
on it are signed but not encrypted so any client can resolve a recipient
before sharing. The earliest registration of an alias wins.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PublicKey

from .canonical_json import b64decode, b64encode
from .entities import ALIAS_CHANNEL, Entity
from .errors import AliasTakenError, SerializationError, UnknownAliasError
from .keys import load_encryption_public_key, public_bytes
from .node import MiningListener, Node
from .records import Reference, timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alias(Entity):
    alias: str
    encryption_key: bytes
    signing_key: bytes

    kind = "alias"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alias": self.alias,
            "encryption_key": b64encode(self.encryption_key),
            "signing_key": b64encode(self.signing_key),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alias":
        return cls(
            alias=str(data["alias"]),
            encryption_key=b64decode(data["encryption_key"]),
            signing_key=b64decode(data["signing_key"]),
        )


def lookup_alias(node: Node, alias: str) -> Optional[Alias]:
    """Earliest valid registration for ``alias`` whose record is signed by the registered key."""
    channel = node.open_channel(ALIAS_CHANNEL)
    for entry, _, payload in node.read(channel, chronological=True):
        try:
            candidate = Alias.parse(payload)
        except SerializationError as e:
            logger.warning("Skipping malformed alias record: %s", e)
            continue
        if candidate.alias != alias or entry.record.creator != alias:
            continue
        if entry.record.signer_key != candidate.signing_key:
            continue
        return candidate
    return None


def resolve_public_key(node: Node, alias: str) -> X25519PublicKey:
    """Encryption public key registered for ``alias``. Raises ``UnknownAliasError``."""
    if alias == node.alias:
        return node.identity.encryption_public_key
    registered = lookup_alias(node, alias)
    if registered is None:
        raise UnknownAliasError(context=alias)
    return load_encryption_public_key(registered.encryption_key)


def register_alias(node: Node, listener: Optional[MiningListener] = None) -> Optional[Reference]:
    """
    Publish the node's alias and public keys.

    Returns the new record's reference, or None when the same keys are
    already registered. Raises ``AliasTakenError`` if another key holds
    the alias.
    """
    identity = node.identity
    entity = Alias(
        alias=identity.alias,
        encryption_key=public_bytes(identity.encryption_public_key),
        signing_key=public_bytes(identity.signing_public_key),
    )
    existing = lookup_alias(node, identity.alias)
    if existing is not None:
        if existing == entity:
            logger.info("Alias %s already registered", identity.alias)
            return None
        raise AliasTakenError(context=identity.alias)

    channel = node.open_channel(ALIAS_CHANNEL)
    reference = node.write(timestamp(), channel, None, None, entity.serialize())
    node.mine(channel, listener)
    node.push(channel)
    logger.info("Registered alias %s", identity.alias)
    return reference
