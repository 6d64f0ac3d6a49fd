"""
node.py — The client context

A Node bundles everything an operation needs: the caller's identity, the
local cache, an optional network, and the client configuration. Every
protocol operation takes a Node explicitly instead of reading process-wide
state.

Records from other aliases are accepted only when signed by the key the
creator registered on the ``Alias`` channel.

Writes go to the cache as pending records; ``mine`` seals them into a
block and moves the channel head. Network propagation is best effort:
``PropagationError`` is logged at WARNING and never aborts a write.
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .cache import Cache, MemoryCache
from .canonical_json import encode_hash
from .channel import (
    Authenticator,
    Channel,
    open_entry,
    open_entry_with_key,
    read,
    read_key,
    read_shared,
    read_with_keys,
)
from .config import ClientConfig
from .entities import ALIAS_CHANNEL
from .errors import NothingToMineError, PropagationError
from .keys import Acl, Identity, public_bytes
from .network import Network
from .records import Block, BlockEntry, Record, Reference, create_record, timestamp

logger = logging.getLogger(__name__)


class MiningListener:
    """Observer for mining progress. Methods are no-ops by default."""

    def on_mining_started(self, channel: Channel, size: int) -> None:
        pass

    def on_mining_complete(self, channel: Channel, block_hash: bytes, block: Block) -> None:
        pass


class LoggingMiningListener(MiningListener):
    def __init__(self, level: int = logging.INFO):
        self.level = level

    def on_mining_started(self, channel: Channel, size: int) -> None:
        logger.log(self.level, "Mining %s (%d records)", channel.name, size)

    def on_mining_complete(self, channel: Channel, block_hash: bytes, block: Block) -> None:
        logger.log(
            self.level,
            "Mined %s block %s length %d",
            channel.name,
            encode_hash(block_hash),
            block.length,
        )


class Node:
    def __init__(
        self,
        identity: Identity,
        cache: Optional[Cache] = None,
        network: Optional[Network] = None,
        config: Optional[ClientConfig] = None,
    ):
        self.identity = identity
        self.cache = cache if cache is not None else MemoryCache()
        self.network = network
        self.config = config or ClientConfig(root_directory=Path("~/.space"))
        self._signing_keys: Dict[str, bytes] = {}

    @property
    def alias(self) -> str:
        return self.identity.alias

    def acl(self) -> Acl:
        return self.identity.acl()

    # -- channels ----------------------------------------------------------

    def open_channel(self, name: str) -> Channel:
        """Open ``name`` at its cached head, then pull from the network."""
        channel = Channel(name)
        self.refresh(channel)
        return channel

    def refresh(self, channel: Channel) -> None:
        """Reload the cached head and pull; fires the channel's triggers if it moved."""
        channel.load_cached_head(self.cache)
        try:
            channel.pull(self.cache, self.network)
        except PropagationError as e:
            logger.warning("Pull of %s failed, using cached state: %s", channel.name, e)

    def push(self, channel: Channel) -> None:
        try:
            channel.push(self.cache, self.network)
        except PropagationError as e:
            logger.warning("Push of %s failed, kept locally: %s", channel.name, e)

    # -- writing -----------------------------------------------------------

    def write(
        self,
        ts: int,
        channel: Channel,
        acl: Optional[Acl],
        references: Optional[List[Reference]],
        payload: bytes,
    ) -> Reference:
        """Create a record and queue it on ``channel``. Returns its reference."""
        _, record = create_record(ts, self.identity, acl, references, payload)
        return self.put_record(channel, record)

    def put_record(self, channel: Channel, record) -> Reference:
        record_hash = record.hash()
        self.cache.put_pending(channel.name, BlockEntry(record_hash=record_hash, record=record))
        return Reference(timestamp=record.timestamp, channel_name=channel.name, record_hash=record_hash)

    def mine(
        self,
        channel: Channel,
        listener: Optional[MiningListener] = None,
    ) -> Tuple[bytes, Block]:
        """
        Seal the channel's pending records into a new head block.

        Entries are ordered by record timestamp (stable), so records written
        with increasing timestamps replay in write order.
        """
        pending = self.cache.pending(channel.name)
        if not pending:
            raise NothingToMineError(context=channel.name)
        pending.sort(key=lambda e: e.record.timestamp)
        listener = listener or MiningListener()
        listener.on_mining_started(channel, len(pending))

        unsealed = Block(
            timestamp=timestamp(),
            channel_name=channel.name,
            length=channel.length(self.cache, self.network) + 1,
            previous=channel.head,
            miner=self.alias,
            entry=tuple(pending),
        )
        block = Block.from_dict(unsealed.to_dict())
        block_hash = block.hash()
        channel.update(self.cache, block_hash, block)
        self.cache.clear_pending(channel.name, [e.record_hash for e in pending])

        listener.on_mining_complete(channel, block_hash, block)
        return block_hash, block

    # -- reading -----------------------------------------------------------

    def registered_signing_key(self, alias: str) -> Optional[bytes]:
        """Raw Ed25519 key ``alias`` registered, or None if it has not."""
        if alias == self.alias:
            return public_bytes(self.identity.signing_public_key)
        key = self._signing_keys.get(alias)
        if key is None:
            from .alias import lookup_alias

            registered = lookup_alias(self, alias)
            if registered is None:
                return None
            # The earliest registration wins, so a found key never changes.
            key = self._signing_keys[alias] = registered.signing_key
        return key

    def is_registered_signer(self, record: Record) -> bool:
        """True when ``record`` is signed by the key registered for its creator."""
        return record.signer_key == self.registered_signing_key(record.creator)

    def _authenticator(self, channel: Channel) -> Optional[Authenticator]:
        # Alias records bind the key themselves; lookup_alias checks them.
        if channel.name == ALIAS_CHANNEL:
            return None
        return self.is_registered_signer

    def read(self, channel: Channel, record_hash: Optional[bytes] = None, chronological: bool = False):
        return read(
            channel, self.cache, self.network, self.identity, record_hash, chronological,
            self._authenticator(channel),
        )

    def read_key(self, channel: Channel, record_hash: bytes) -> Optional[bytes]:
        return read_key(
            channel, self.cache, self.network, self.identity, record_hash, self._authenticator(channel)
        )

    def read_shared(self, channel: Channel, record_hash: bytes, key: Optional[bytes]):
        return read_shared(channel, self.cache, self.network, record_hash, key, self._authenticator(channel))

    def read_with_keys(self, channel: Channel, keys: Dict[bytes, Optional[bytes]], chronological: bool = False):
        return read_with_keys(
            channel, self.cache, self.network, keys, chronological, self._authenticator(channel)
        )

    def index(self, channel: Channel) -> Dict[bytes, BlockEntry]:
        return channel.index(self.cache, self.network)

    def open_entry(self, channel: Channel, entry: BlockEntry) -> Tuple[Optional[bytes], bytes]:
        return open_entry(channel, entry, self.identity, self._authenticator(channel))

    def open_entry_with_key(self, channel: Channel, entry: BlockEntry, key: Optional[bytes]) -> bytes:
        return open_entry_with_key(channel, entry, key, self._authenticator(channel))
