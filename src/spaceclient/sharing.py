"""
sharing.py — Granting read access to a file

Implements:
  - share():            wrap a file's raw content keys for each recipient
  - shares():           Share records addressed to the caller
  - shared_metas():     Metas opened with Share keys
  - read_shared_file(): reconstruct a shared file with Share keys only

File bytes are never re-encrypted. A Share carries the Meta key, one key
per chunk (parallel to the Meta's reference list) and the keys of the
deltas that existed when it was written. The Share record itself is
encrypted for exactly the recipient and the owner.
"""

from __future__ import annotations
import logging
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PublicKey

from .alias import resolve_public_key
from .canonical_json import decode_hash, encode_hash
from .channel import Channel
from .entities import Meta, Share, delta_channel_name, meta_channel_name, share_channel_name
from .errors import (
    AccessDeniedError,
    BatchError,
    DecryptError,
    InvalidSignatureError,
    NotFoundError,
    SerializationError,
    SpaceError,
)
from .files import chunk_entries, iter_chunks, iter_deltas, owned_meta, write_content
from .node import MiningListener, Node
from .records import BlockEntry, Reference, timestamp

logger = logging.getLogger(__name__)

Resolver = Callable[[Node, str], X25519PublicKey]


def share(
    node: Node,
    listener: Optional[MiningListener],
    meta_id: bytes,
    recipients: Iterable[str],
    resolve: Optional[Resolver] = None,
) -> Dict[str, Reference]:
    """Share one of the caller's files with each recipient.

    Args:
        node: Client context of the file's owner.
        listener: Mining progress observer, may be None.
        meta_id: Record hash of the Meta to share.
        recipients: Aliases to grant access to.
        resolve: Alias -> X25519 public key lookup. Defaults to the
            Alias channel.

    Returns:
        Dict[str, Reference]: recipient -> the Share record written for them.

    Raises:
        NotFoundError: ``meta_id`` is not one of the caller's files.
        BatchError: One or more recipients failed; the others were shared.
    """
    resolve = resolve or resolve_public_key
    entry, meta_key, meta = owned_meta(node, meta_id)

    chunk_keys = [
        node.open_entry(channel, chunk)[0]
        for channel, chunk in chunk_entries(node, entry.record.reference)
    ]

    delta_keys = {}
    deltas = node.open_channel(delta_channel_name(meta_id))
    for delta_entry, key, _ in node.read(deltas):
        if delta_entry.record.creator == entry.record.creator:
            delta_keys[encode_hash(delta_entry.record_hash)] = key

    payload = Share(
        meta_reference=Reference(
            timestamp=entry.record.timestamp,
            channel_name=meta_channel_name(node.alias),
            record_hash=meta_id,
        ),
        meta_key=meta_key,
        chunk_key=chunk_keys,
        delta_key=delta_keys,
    ).serialize()

    succeeded: Dict[str, Reference] = {}
    failures: Dict[str, SpaceError] = {}
    for recipient in recipients:
        try:
            acl = node.acl().with_member(recipient, resolve(node, recipient))
            channel = node.open_channel(share_channel_name(recipient))
            reference = node.write(timestamp(), channel, acl, None, payload)
            node.mine(channel, listener)
            node.push(channel)
        except SpaceError as e:
            logger.warning("Sharing %s with %s failed: %s", encode_hash(meta_id), recipient, e)
            failures[recipient] = e
            continue
        logger.info("Shared %s (%s) with %s", meta.name, encode_hash(meta_id), recipient)
        succeeded[recipient] = reference

    if failures:
        raise BatchError(failures, succeeded)
    return succeeded


# A single Share that cannot be opened is reported and skipped.
_UNREADABLE_SHARE = (
    AccessDeniedError,
    DecryptError,
    InvalidSignatureError,
    NotFoundError,
    SerializationError,
)


def shares(node: Node) -> Iterator[Tuple[BlockEntry, Share]]:
    """Share records addressed to the caller, newest first."""
    channel = node.open_channel(share_channel_name(node.alias))
    for entry, _, payload in node.read(channel):
        try:
            yield entry, Share.parse(payload)
        except SerializationError as e:
            logger.warning("Skipping malformed share %s: %s", encode_hash(entry.record_hash), e)


def _open_shared_meta(
    node: Node,
    channels: Dict[str, Channel],
    item: Share,
) -> Tuple[BlockEntry, Meta]:
    reference = item.meta_reference
    channel = channels.get(reference.channel_name)
    if channel is None:
        channel = channels[reference.channel_name] = node.open_channel(reference.channel_name)
    entry, payload = node.read_shared(channel, reference.record_hash, item.meta_key)
    if len(item.chunk_key) != len(entry.record.reference):
        raise SerializationError(
            f"share has {len(item.chunk_key)} chunk keys for {len(entry.record.reference)} chunks"
        )
    return entry, Meta.parse(payload)


def _readable_shares(node: Node, meta_id: Optional[bytes] = None) -> Iterator[Tuple[BlockEntry, Meta, Share]]:
    """Open each Share (optionally only those of ``meta_id``), skipping unreadable ones."""
    channels: Dict[str, Channel] = {}
    for share_entry, item in shares(node):
        target = item.meta_reference.record_hash
        if target is None or (meta_id is not None and target != meta_id):
            continue
        try:
            entry, meta = _open_shared_meta(node, channels, item)
        except _UNREADABLE_SHARE as e:
            logger.warning(
                "Skipping share %s of %s from %s: %s",
                encode_hash(share_entry.record_hash),
                encode_hash(target),
                share_entry.record.creator,
                e,
            )
            continue
        yield entry, meta, item


def shared_metas(node: Node) -> Iterator[Tuple[BlockEntry, Meta, Share]]:
    """
    Metas shared with the caller, each once, opened with the newest
    readable Share.

    Yields ``(meta_entry, meta, share)``.
    """
    seen = set()
    for entry, meta, item in _readable_shares(node):
        if entry.record_hash in seen:
            continue
        seen.add(entry.record_hash)
        yield entry, meta, item


def shared_meta_for_hash(node: Node, meta_id: bytes) -> Tuple[BlockEntry, Meta, Share]:
    """The shared Meta with record hash ``meta_id``. Raises ``NotFoundError``."""
    for entry, meta, item in _readable_shares(node, meta_id):
        return entry, meta, item
    raise NotFoundError(context=f"no share of {encode_hash(meta_id)} for {node.alias}")


def read_shared_file(node: Node, meta_id: bytes, writer: BinaryIO) -> int:
    """Write the content of a file shared with the caller. Returns bytes written.

    Deltas appended after the Share was written have no key in it and are
    not replayed.
    """
    entry, meta, item = shared_meta_for_hash(node, meta_id)
    keys = {decode_hash(h): k for h, k in item.delta_key.items()}
    deltas = list(iter_deltas(node, entry, keys))
    count = write_content(iter_chunks(node, entry.record.reference, item.chunk_key), deltas, writer)
    logger.debug("Read shared %s (%s): %d bytes, %d deltas", meta.name, encode_hash(meta_id), count, len(deltas))
    return count
