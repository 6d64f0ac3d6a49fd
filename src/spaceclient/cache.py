"""
cache.py — Local block cache

The cache is the local half of the chain substrate: it stores mined
blocks by hash, the head reference of each channel, and records written
but not yet mined ("pending").

Two implementations:
  - MemoryCache: dictionaries, for tests and short-lived clients
  - FileCache: one canonical JSON file per block and head, NDJSON per
    channel for pending entries
"""

from __future__ import annotations
import abc
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .canonical_json import canonical_dumps, canonical_loads, encode_hash
from .errors import SerializationError
from .records import Block, BlockEntry, Reference

logger = logging.getLogger(__name__)


class Cache(abc.ABC):
    """Storage interface consumed by channels and nodes."""

    @abc.abstractmethod
    def block(self, block_hash: bytes) -> Optional[Block]:
        """Return the block, or None if this cache does not hold it."""

    @abc.abstractmethod
    def put_block(self, block_hash: bytes, block: Block) -> None: ...

    @abc.abstractmethod
    def head(self, channel_name: str) -> Optional[Reference]: ...

    @abc.abstractmethod
    def put_head(self, channel_name: str, reference: Reference) -> None: ...

    @abc.abstractmethod
    def pending(self, channel_name: str) -> List[BlockEntry]:
        """Records written to the channel but not yet sealed into a block."""

    @abc.abstractmethod
    def put_pending(self, channel_name: str, entry: BlockEntry) -> None: ...

    @abc.abstractmethod
    def clear_pending(self, channel_name: str, record_hashes: Iterable[bytes]) -> None: ...


class MemoryCache(Cache):
    def __init__(self) -> None:
        self._blocks: Dict[bytes, Block] = {}
        self._heads: Dict[str, Reference] = {}
        self._pending: Dict[str, List[BlockEntry]] = {}

    def block(self, block_hash: bytes) -> Optional[Block]:
        return self._blocks.get(block_hash)

    def put_block(self, block_hash: bytes, block: Block) -> None:
        self._blocks[block_hash] = block

    def head(self, channel_name: str) -> Optional[Reference]:
        return self._heads.get(channel_name)

    def put_head(self, channel_name: str, reference: Reference) -> None:
        self._heads[channel_name] = reference

    def pending(self, channel_name: str) -> List[BlockEntry]:
        return list(self._pending.get(channel_name, []))

    def put_pending(self, channel_name: str, entry: BlockEntry) -> None:
        self._pending.setdefault(channel_name, []).append(entry)

    def clear_pending(self, channel_name: str, record_hashes: Iterable[bytes]) -> None:
        drop = set(record_hashes)
        remaining = [e for e in self._pending.get(channel_name, []) if e.record_hash not in drop]
        if remaining:
            self._pending[channel_name] = remaining
        else:
            self._pending.pop(channel_name, None)


# ---------------------------------------------------------------------------
# File-backed cache
# ---------------------------------------------------------------------------

def load_entries(path: Path) -> List[BlockEntry]:
    """
    Load pending entries from an NDJSON file. Skips blank lines; a line that
    does not parse raises ``SerializationError`` rather than losing a write.
    """
    entries: List[BlockEntry] = []
    if not path.exists():
        return entries
    with path.open("r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                entries.append(BlockEntry.from_dict(json.loads(stripped)))
            except json.JSONDecodeError as e:
                raise SerializationError(f"{path}:{line_num}: {e}") from e
    return entries


def write_entries(path: Path, entries: List[BlockEntry]) -> None:
    """Write entries as NDJSON (one canonical JSON line per entry)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for entry in entries:
            f.write(canonical_dumps(entry.to_dict()) + "\n")


class FileCache(Cache):
    """Cache rooted at a directory::

        <root>/block/<hash>.json
        <root>/channel/<name>.json
        <root>/pending/<name>.ndjson
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        for sub in ("block", "channel", "pending"):
            (self.directory / sub).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _name(channel_name: str) -> str:
        return encode_hash(channel_name.encode("utf-8"))

    def _block_path(self, block_hash: bytes) -> Path:
        return self.directory / "block" / f"{block_hash.hex()}.json"

    def _head_path(self, channel_name: str) -> Path:
        return self.directory / "channel" / f"{self._name(channel_name)}.json"

    def _pending_path(self, channel_name: str) -> Path:
        return self.directory / "pending" / f"{self._name(channel_name)}.ndjson"

    def block(self, block_hash: bytes) -> Optional[Block]:
        path = self._block_path(block_hash)
        if not path.exists():
            return None
        return Block.from_dict(canonical_loads(path.read_bytes()))

    def put_block(self, block_hash: bytes, block: Block) -> None:
        self._block_path(block_hash).write_text(canonical_dumps(block.to_dict()), encoding="utf-8")

    def head(self, channel_name: str) -> Optional[Reference]:
        path = self._head_path(channel_name)
        if not path.exists():
            return None
        return Reference.from_dict(canonical_loads(path.read_bytes()))

    def put_head(self, channel_name: str, reference: Reference) -> None:
        self._head_path(channel_name).write_text(canonical_dumps(reference.to_dict()), encoding="utf-8")

    def pending(self, channel_name: str) -> List[BlockEntry]:
        return load_entries(self._pending_path(channel_name))

    def put_pending(self, channel_name: str, entry: BlockEntry) -> None:
        with self._pending_path(channel_name).open("a", encoding="utf-8") as f:
            f.write(canonical_dumps(entry.to_dict()) + "\n")

    def clear_pending(self, channel_name: str, record_hashes: Iterable[bytes]) -> None:
        path = self._pending_path(channel_name)
        drop = set(record_hashes)
        remaining = [e for e in load_entries(path) if e.record_hash not in drop]
        if remaining:
            write_entries(path, remaining)
        elif path.exists():
            path.unlink()
        logger.debug("Cleared %d pending entries from %s", len(drop), channel_name)
