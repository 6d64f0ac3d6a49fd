"""Space client public API.

This module exposes the high-level ``SpaceClient`` facade and stable
top-level imports for files, deltas, sharing and search.

Example:
    from spaceclient import ClientConfig, SpaceClient

    client = SpaceClient.open(ClientConfig.from_env(), "alice")
    with open("notes.txt", "rb") as f:
        ref = client.add("notes.txt", "text/plain", f)
    print(client.read_bytes(ref.record_hash))
"""

import io
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .cache import Cache, FileCache, MemoryCache
from .canonical_json import decode_hash, encode_hash
from .channel import Channel
from .config import ClientConfig, configure_logging
from .delta import apply_delta, compute_deltas, reconstruct
from .entities import Delta, Meta, Share, Tag
from .errors import (
    AccessDeniedError,
    BatchError,
    DecryptError,
    InvalidSignatureError,
    MalformedDeltaError,
    NotFoundError,
    PropagationError,
    SerializationError,
    SpaceError,
    UnknownAliasError,
)
from .keys import Acl, Identity, load_identity, save_identity
from .network import LoopbackNetwork, Network
from .node import LoggingMiningListener, MiningListener, Node
from .records import BlockEntry, Reference
from . import alias, files, search, sharing
from .search import NameFilter, SearchResult, TagFilter, TypeFilter

__all__ = [
    "SpaceClient",
    "ClientConfig",
    "configure_logging",
    "Identity",
    "Acl",
    "Node",
    "MiningListener",
    "LoggingMiningListener",
    "Cache",
    "MemoryCache",
    "FileCache",
    "Network",
    "LoopbackNetwork",
    "Channel",
    "Reference",
    "BlockEntry",
    "Meta",
    "Delta",
    "Share",
    "Tag",
    "apply_delta",
    "reconstruct",
    "compute_deltas",
    "NameFilter",
    "TypeFilter",
    "TagFilter",
    "SearchResult",
    "encode_hash",
    "decode_hash",
    "SpaceError",
    "AccessDeniedError",
    "DecryptError",
    "InvalidSignatureError",
    "NotFoundError",
    "UnknownAliasError",
    "MalformedDeltaError",
    "SerializationError",
    "PropagationError",
    "BatchError",
]


class SpaceClient:
    """High-level facade binding a ``Node`` and a mining listener."""

    def __init__(self, node: Node, listener: Optional[MiningListener] = None):
        self.node = node
        self.listener = listener or LoggingMiningListener()

    @classmethod
    def open(
        cls,
        config: ClientConfig,
        alias_name: str,
        network: Optional[Network] = None,
        listener: Optional[MiningListener] = None,
    ) -> "SpaceClient":
        """Open a client rooted at ``config.root_directory``.

        The identity for ``alias_name`` is loaded from the keys directory,
        or generated and saved there on first use. Blocks are cached on
        disk under the cache directory.

        Args:
            config: Client configuration.
            alias_name: Alias to act as.
            network: Optional network to pull from and push to.
            listener: Mining observer; defaults to logging progress.

        Returns:
            SpaceClient: Client bound to a new ``Node``.
        """
        try:
            identity = load_identity(config.keys_directory, alias_name)
        except FileNotFoundError:
            identity = Identity.generate(alias_name)
            save_identity(config.keys_directory, identity)
        node = Node(identity, FileCache(config.cache_directory), network, config)
        return cls(node, listener)

    @property
    def alias(self) -> str:
        return self.node.alias

    def register(self) -> Optional[Reference]:
        """Publish this client's alias and public keys."""
        return alias.register_alias(self.node, self.listener)

    # -- files -------------------------------------------------------------

    def add(self, name: str, mime: str, reader: BinaryIO, mode: str = files.CHUNK_MODE) -> Reference:
        return files.add(self.node, self.listener, name, mime, reader, mode)

    def append(self, meta_id: bytes, *deltas: Delta) -> List[Reference]:
        return files.append(self.node, self.listener, meta_id, *deltas)

    def write_file(self, meta_id: bytes) -> files.FileWriter:
        return files.write_file(self.node, self.listener, meta_id)

    def watch_file(self, meta_id: bytes, callback: Callable[[], None]) -> Channel:
        return files.watch_file(self.node, meta_id, callback)

    def all_metas(self) -> Iterator[Tuple[BlockEntry, Meta]]:
        return files.all_metas(self.node)

    def meta_for_hash(self, meta_id: bytes) -> Tuple[BlockEntry, Meta]:
        return files.meta_for_hash(self.node, meta_id)

    def read_file(self, meta_id: bytes, writer: BinaryIO) -> int:
        """Write a file's content, own files first, then files shared with us."""
        try:
            files.meta_for_hash(self.node, meta_id)
        except NotFoundError:
            return sharing.read_shared_file(self.node, meta_id, writer)
        return files.read_file(self.node, meta_id, writer)

    def read_bytes(self, meta_id: bytes) -> bytes:
        buffer = io.BytesIO()
        self.read_file(meta_id, buffer)
        return buffer.getvalue()

    # -- sharing -----------------------------------------------------------

    def share(self, meta_id: bytes, recipients: Iterable[str]) -> Dict[str, Reference]:
        return sharing.share(self.node, self.listener, meta_id, recipients)

    def shared_metas(self) -> Iterator[Tuple[BlockEntry, Meta, Share]]:
        return sharing.shared_metas(self.node)

    # -- tags and search ---------------------------------------------------

    def add_tag(self, meta_id: bytes, tags: Sequence[str]) -> List[Reference]:
        return search.add_tag(self.node, self.listener, meta_id, tags)

    def all_tags_for_hash(self, meta_id: bytes) -> Iterator[Tuple[BlockEntry, Tag]]:
        return search.all_tags_for_hash(self.node, meta_id)

    def search(
        self,
        names: Iterable[str] = (),
        types: Iterable[str] = (),
        tags: Iterable[str] = (),
    ) -> List[SearchResult]:
        return search.ranked_search(self.node, names, types, tags)
