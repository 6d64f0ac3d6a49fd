"""
network.py — Network collaborator interface

Transport and peer discovery belong to the chain substrate. This module
defines the narrow interface the client consumes and a loopback
implementation that links a client to peer caches in the same process.
Every failure surfaces as ``PropagationError``; nodes log it and carry on
because local state stays authoritative.
"""

from __future__ import annotations
import abc
import logging
from typing import List, Optional

from .cache import Cache
from .canonical_json import encode_hash
from .errors import PropagationError
from .records import Block, Reference

logger = logging.getLogger(__name__)


class Network(abc.ABC):

    @abc.abstractmethod
    def head(self, channel_name: str) -> Optional[Reference]:
        """Best known head for the channel, or None if no peer has it."""

    @abc.abstractmethod
    def block(self, block_hash: bytes) -> Optional[Block]: ...

    @abc.abstractmethod
    def broadcast(self, channel_name: str, cache: Cache, block_hash: bytes, block: Block) -> None:
        """Offer a new head block (and any ancestors peers lack) to peers."""


class LoopbackNetwork(Network):
    """Peers are other caches; the longest chain wins."""

    def __init__(self, peers: Optional[List[Cache]] = None):
        self.peers: List[Cache] = list(peers or [])

    def _length(self, cache: Cache, reference: Optional[Reference]) -> int:
        if reference is None or reference.block_hash is None:
            return 0
        block = cache.block(reference.block_hash)
        return block.length if block else 0

    def head(self, channel_name: str) -> Optional[Reference]:
        best: Optional[Reference] = None
        best_length = 0
        for peer in self.peers:
            ref = peer.head(channel_name)
            length = self._length(peer, ref)
            if ref is not None and length > best_length:
                best, best_length = ref, length
        return best

    def block(self, block_hash: bytes) -> Optional[Block]:
        for peer in self.peers:
            block = peer.block(block_hash)
            if block is not None:
                return block
        return None

    def broadcast(self, channel_name: str, cache: Cache, block_hash: bytes, block: Block) -> None:
        errors: List[str] = []
        for index, peer in enumerate(self.peers):
            peer_head = peer.head(channel_name)
            if peer_head is not None and peer_head.block_hash == block_hash:
                continue
            if self._length(peer, peer_head) >= block.length:
                errors.append(
                    f"peer {index} rejected {encode_hash(block_hash)}: "
                    f"its chain is at least as long as {block.length}"
                )
                continue

            # Copy the new block and every ancestor the peer is missing.
            current_hash: Optional[bytes] = block_hash
            current: Optional[Block] = block
            while current_hash is not None and peer.block(current_hash) is None:
                if current is None:
                    current = cache.block(current_hash)
                if current is None:
                    errors.append(f"peer {index}: local cache lacks ancestor {encode_hash(current_hash)}")
                    break
                peer.put_block(current_hash, current)
                current_hash, current = current.previous, None
            else:
                peer.put_head(
                    channel_name,
                    Reference(timestamp=block.timestamp, channel_name=channel_name, block_hash=block_hash),
                )
                logger.debug("Broadcast %s head %s to peer %d", channel_name, encode_hash(block_hash), index)
        if errors:
            raise PropagationError(context="; ".join(errors))
