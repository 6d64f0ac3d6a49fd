"""
channel.py — Append-only named logs

A channel is a name plus the hash of its newest block. Everything else
(blocks, pending records) lives in the cache, so a Channel object is cheap
to open and is refreshed from cache and network at the start of each
operation.

Read helpers decrypt records for one identity:
  - read():        lazy scan (or single-record lookup) of decryptable records
  - read_key():    the caller's raw content key for one record
  - read_shared(): decrypt one record with a raw key taken from a Share
  - read_with_keys(): scan records for which raw keys are held
  - open_entry(), open_entry_with_key(): one entry from ``Channel.index``

Every record read is hash- and signature-checked. An optional
authenticator additionally ties the signing key to the creator alias.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .cache import Cache
from .canonical_json import encode_hash
from .errors import (
    AccessDeniedError,
    InvalidSignatureError,
    NotFoundError,
    PropagationError,
    SerializationError,
)
from .keys import Identity
from .network import Network
from .records import (
    Block,
    BlockEntry,
    Record,
    Reference,
    open_record,
    open_record_with_key,
    verify_record,
)

logger = logging.getLogger(__name__)

Trigger = Callable[[], None]
# Returns True when a record is signed by the key registered for its creator.
Authenticator = Callable[[Record], bool]


class Channel:
    def __init__(self, name: str):
        self.name = name
        self.head: Optional[bytes] = None
        self.timestamp: int = 0
        self._triggers: List[Trigger] = []

    def __repr__(self) -> str:
        head = encode_hash(self.head) if self.head else None
        return f"Channel({self.name!r}, head={head})"

    def add_trigger(self, trigger: Trigger) -> None:
        """Call ``trigger`` whenever this channel's head moves."""
        self._triggers.append(trigger)

    def remove_trigger(self, trigger: Trigger) -> None:
        self._triggers.remove(trigger)

    # -- head management ---------------------------------------------------

    def load_cached_head(self, cache: Cache) -> None:
        ref = cache.head(self.name)
        if ref is None or ref.block_hash is None:
            logger.debug("No cached head for %s", self.name)
            return
        self._set_head(ref.block_hash, ref.timestamp)

    def _set_head(self, block_hash: bytes, ts: int) -> None:
        changed = block_hash != self.head
        self.head = block_hash
        self.timestamp = ts
        if changed:
            for trigger in list(self._triggers):
                trigger()

    def length(self, cache: Cache, network: Optional[Network] = None) -> int:
        if self.head is None:
            return 0
        return self.block(cache, network, self.head).length

    def update(self, cache: Cache, block_hash: bytes, block: Block) -> None:
        """Store ``block`` and make it the head. Rejects blocks for other channels."""
        if block.channel_name != self.name:
            raise SerializationError(
                f"block for channel {block.channel_name!r} offered to {self.name!r}"
            )
        if self.head == block_hash:
            return
        cache.put_block(block_hash, block)
        cache.put_head(
            self.name,
            Reference(timestamp=block.timestamp, channel_name=self.name, block_hash=block_hash),
        )
        logger.debug("%s head -> %s (length %d)", self.name, encode_hash(block_hash), block.length)
        self._set_head(block_hash, block.timestamp)

    def pull(self, cache: Cache, network: Optional[Network]) -> None:
        """
        Adopt the network's head if its chain is longer than ours.

        Missing ancestors are copied into the cache first so the new head is
        always fully walkable. Raises ``PropagationError`` on network failure.
        """
        if network is None:
            return
        remote = network.head(self.name)
        if remote is None or remote.block_hash is None or remote.block_hash == self.head:
            return
        remote_block = network.block(remote.block_hash)
        if remote_block is None:
            raise PropagationError(context=f"{self.name}: remote head block unavailable")
        if remote_block.length <= self.length(cache, network):
            return

        current_hash = remote_block.previous
        while current_hash is not None and cache.block(current_hash) is None:
            ancestor = network.block(current_hash)
            if ancestor is None:
                raise PropagationError(
                    context=f"{self.name}: ancestor {encode_hash(current_hash)} unavailable"
                )
            cache.put_block(current_hash, ancestor)
            current_hash = ancestor.previous
        self.update(cache, remote.block_hash, remote_block)

    def push(self, cache: Cache, network: Optional[Network]) -> None:
        if network is None or self.head is None:
            return
        network.broadcast(self.name, cache, self.head, self.block(cache, None, self.head))

    # -- traversal ---------------------------------------------------------

    def block(self, cache: Cache, network: Optional[Network], block_hash: bytes) -> Block:
        """Fetch a block from cache, falling back to the network."""
        block = cache.block(block_hash)
        if block is not None:
            return block
        if network is not None:
            try:
                block = network.block(block_hash)
            except PropagationError as e:
                logger.warning("Fetching block %s failed: %s", encode_hash(block_hash), e)
            if block is not None:
                cache.put_block(block_hash, block)
                return block
        raise NotFoundError(context=f"block {encode_hash(block_hash)} on {self.name}")

    def iterate(self, cache: Cache, network: Optional[Network] = None) -> Iterator[Block]:
        """Blocks from head back to the first block."""
        current = self.head
        while current is not None:
            block = self.block(cache, network, current)
            yield block
            current = block.previous

    def entries(
        self,
        cache: Cache,
        network: Optional[Network] = None,
        chronological: bool = False,
    ) -> Iterator[BlockEntry]:
        """
        Record entries on the channel.

        Default order walks newest block first. ``chronological=True`` gives
        append order (oldest block first, entries in sealed order), the only
        order in which deltas may be replayed.
        """
        if chronological:
            blocks = list(self.iterate(cache, network))
            blocks.reverse()
        else:
            blocks = self.iterate(cache, network)
        for block in blocks:
            yield from block.entry



    def index(self, cache: Cache, network: Optional[Network] = None) -> Dict[bytes, BlockEntry]:
        """``record_hash -> entry`` for every record, from one walk of the chain."""
        return {entry.record_hash: entry for entry in self.entries(cache, network)}


# ---------------------------------------------------------------------------
# Reading records
# ---------------------------------------------------------------------------

def _checked(entry: BlockEntry) -> BlockEntry:
    if entry.record.hash() != entry.record_hash:
        raise SerializationError(f"record hash mismatch for {encode_hash(entry.record_hash)}")
    verify_record(entry.record)
    return entry


def _authentic(entry: BlockEntry, authenticate: Optional[Authenticator]) -> bool:
    return authenticate is None or authenticate(entry.record)


def _require_authentic(
    channel: Channel,
    entry: BlockEntry,
    authenticate: Optional[Authenticator],
) -> None:
    if not _authentic(entry, authenticate):
        raise InvalidSignatureError(
            context=f"record {encode_hash(entry.record_hash)} on {channel.name} is not signed "
            f"by the key registered for {entry.record.creator!r}"
        )


def _skip_forged(channel: Channel, entry: BlockEntry) -> None:
    logger.warning(
        "Skipping record %s on %s: not signed by the key registered for %r",
        encode_hash(entry.record_hash),
        channel.name,
        entry.record.creator,
    )


def open_entry(
    channel: Channel,
    entry: BlockEntry,
    identity: Identity,
    authenticate: Optional[Authenticator] = None,
) -> Tuple[Optional[bytes], bytes]:
    """Check and decrypt one entry for ``identity``. Returns ``(content_key, payload)``."""
    _checked(entry)
    key, payload = open_record(entry.record, identity)
    _require_authentic(channel, entry, authenticate)
    return key, payload


def open_entry_with_key(
    channel: Channel,
    entry: BlockEntry,
    key: Optional[bytes],
    authenticate: Optional[Authenticator] = None,
) -> bytes:
    """Check one entry and decrypt it with a raw content key from a Share."""
    _checked(entry)
    payload = open_record_with_key(entry.record, key)
    _require_authentic(channel, entry, authenticate)
    return payload


def read(
    channel: Channel,
    cache: Cache,
    network: Optional[Network],
    identity: Identity,
    record_hash: Optional[bytes] = None,
    chronological: bool = False,
    authenticate: Optional[Authenticator] = None,
) -> Iterator[Tuple[BlockEntry, Optional[bytes], bytes]]:
    """
    Yield ``(entry, content_key, payload)`` for records ``identity`` can open.

    With ``record_hash`` None every record is scanned; records not shared
    with the alias are skipped, and so are records ``authenticate`` rejects
    (logged at WARNING). With a hash, exactly that record is returned;
    ``AccessDeniedError`` if it is not shared with the alias,
    ``InvalidSignatureError`` if ``authenticate`` rejects it,
    ``NotFoundError`` if the channel does not contain it.
    """
    if record_hash is not None:
        for entry in channel.entries(cache, network):
            if entry.record_hash == record_hash:
                key, payload = open_entry(channel, entry, identity, authenticate)
                yield entry, key, payload
                return
        raise NotFoundError(context=f"record {encode_hash(record_hash)} on {channel.name}")

    for entry in channel.entries(cache, network, chronological=chronological):
        _checked(entry)
        try:
            key, payload = open_record(entry.record, identity)
        except AccessDeniedError:
            continue
        if not _authentic(entry, authenticate):
            _skip_forged(channel, entry)
            continue
        yield entry, key, payload


def read_key(
    channel: Channel,
    cache: Cache,
    network: Optional[Network],
    identity: Identity,
    record_hash: bytes,
    authenticate: Optional[Authenticator] = None,
) -> Optional[bytes]:
    """The caller's raw content key for one record (None if unencrypted)."""
    for _, key, _ in read(channel, cache, network, identity, record_hash, authenticate=authenticate):
        return key
    raise NotFoundError(context=f"record {encode_hash(record_hash)} on {channel.name}")


def read_with_keys(
    channel: Channel,
    cache: Cache,
    network: Optional[Network],
    keys: Dict[bytes, Optional[bytes]],
    chronological: bool = False,
    authenticate: Optional[Authenticator] = None,
) -> Iterator[Tuple[BlockEntry, bytes]]:
    """Yield ``(entry, payload)`` for every record whose hash has a key in ``keys``."""
    for entry in channel.entries(cache, network, chronological=chronological):
        if entry.record_hash not in keys:
            continue
        _checked(entry)
        payload = open_record_with_key(entry.record, keys[entry.record_hash])
        if not _authentic(entry, authenticate):
            _skip_forged(channel, entry)
            continue
        yield entry, payload


def read_shared(
    channel: Channel,
    cache: Cache,
    network: Optional[Network],
    record_hash: bytes,
    key: Optional[bytes],
    authenticate: Optional[Authenticator] = None,
) -> Tuple[BlockEntry, bytes]:
    """Decrypt one record with a raw content key from a Share."""
    for entry in channel.entries(cache, network):
        if entry.record_hash == record_hash:
            return entry, open_entry_with_key(channel, entry, key, authenticate)
    raise NotFoundError(context=f"record {encode_hash(record_hash)} on {channel.name}")
