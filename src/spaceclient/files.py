"""
files.py — Meta/File protocol

Implements:
  - add():           store a file as a Meta plus encrypted chunk records,
                     or as a Meta plus insert-only deltas
  - append():        amend a file by appending Delta records
  - read_file():     chunk bytes in Meta reference order, then deltas
                     replayed in chain order
  - all_metas(), meta_for_hash(): the caller's own Meta index
  - write_file():    buffered writer that appends the minimal delta on close
  - watch_file():    trigger on new deltas

A Meta is never rewritten. Edits live on ``Space-Delta-<metaId>`` and only
deltas written by the Meta's creator are replayed.
"""

from __future__ import annotations
import io
import logging
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .canonical_json import encode_hash
from .channel import Channel
from .delta import compute_deltas, reconstruct
from .entities import Delta, Meta, delta_channel_name, file_channel_name, meta_channel_name
from .errors import MalformedDeltaError, NotFoundError
from .node import MiningListener, Node
from .records import BlockEntry, Reference, timestamp

logger = logging.getLogger(__name__)

CHUNK_MODE = "chunk"
DELTA_MODE = "delta"


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def add(
    node: Node,
    listener: Optional[MiningListener],
    name: str,
    mime: str,
    reader: BinaryIO,
    mode: str = CHUNK_MODE,
) -> Reference:
    """Store the bytes of ``reader`` as a new file.

    Args:
        node: Client context.
        listener: Mining progress observer, may be None.
        name: Display name.
        mime: MIME type.
        reader: Binary source; read to EOF, not closed.
        mode: ``"chunk"`` (encrypted chunk records referenced by the Meta)
            or ``"delta"`` (empty Meta, content as insert-only deltas).

    Returns:
        Reference: The Meta record; its ``record_hash`` is the metaId.
    """
    if mode not in (CHUNK_MODE, DELTA_MODE):
        raise ValueError(f"unknown add mode {mode!r}")
    chunk_size = node.config.chunk_size
    acl = node.acl()
    metas = node.open_channel(meta_channel_name(node.alias))

    if mode == DELTA_MODE:
        reference = node.write(timestamp(), metas, acl, None, Meta(name=name, type=mime).serialize())
        node.mine(metas, listener)
        node.push(metas)
        deltas = []
        offset = 0
        while True:
            data = reader.read(chunk_size)
            if not data:
                break
            deltas.append(Delta(offset=offset, insert=data))
            offset += len(data)
        append(node, listener, reference.record_hash, *deltas)
        logger.info("Added %s (%s) as %d deltas", name, encode_hash(reference.record_hash), len(deltas))
        return reference

    files = node.open_channel(file_channel_name(node.alias))
    references: List[Reference] = []
    size = 0
    while True:
        data = reader.read(chunk_size)
        if not data:
            break
        size += len(data)
        references.append(node.write(timestamp(), files, acl, None, data))

    if references:
        node.mine(files, listener)
        node.push(files)

    meta = Meta(name=name, type=mime, size=size)
    reference = node.write(timestamp(), metas, acl, references, meta.serialize())
    node.mine(metas, listener)
    node.push(metas)
    logger.info(
        "Added %s (%s), %d bytes in %d chunks",
        name, encode_hash(reference.record_hash), size, len(references),
    )
    return reference


def append(
    node: Node,
    listener: Optional[MiningListener],
    meta_id: bytes,
    *deltas: Delta,
) -> List[Reference]:
    """
    Append deltas to a file, one record each, then mine once.

    Timestamps are strictly increasing across the batch and after the
    channel's current head, spinning on the clock when two reads collide.
    """
    for delta in deltas:
        if delta.offset < 0 or delta.delete < 0:
            raise MalformedDeltaError(context=f"offset={delta.offset} delete={delta.delete}")
    if not deltas:
        return []
    channel = node.open_channel(delta_channel_name(meta_id))
    acl = node.acl()
    last = channel.timestamp
    references = []
    for delta in deltas:
        ts = timestamp()
        while ts <= last:
            ts = timestamp()
        last = ts
        references.append(node.write(ts, channel, acl, None, delta.serialize()))
    node.mine(channel, listener)
    node.push(channel)
    return references


class FileWriter:
    """Buffers new content; ``close()`` appends the delta from the current content.

    Leaving a ``with`` block because of an exception discards the buffer.
    """

    def __init__(self, node: Node, listener: Optional[MiningListener], meta_id: bytes):
        self.node = node
        self.listener = listener
        self.meta_id = meta_id
        self.references: List[Reference] = []
        self._buffer = io.BytesIO()
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed FileWriter")
        return self._buffer.write(data)

    def close(self) -> None:
        if self.closed:
            return
        try:
            new = self._buffer.getvalue()
            old = read_bytes(self.node, self.meta_id)
            deltas = compute_deltas(old, new, self.node.config.chunk_size)
            if deltas:
                self.references = append(self.node, self.listener, self.meta_id, *deltas)
        finally:
            self.closed = True

    def discard(self) -> None:
        self.closed = True
        self._buffer = io.BytesIO()

    def __enter__(self) -> "FileWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.discard()


def write_file(node: Node, listener: Optional[MiningListener], meta_id: bytes) -> FileWriter:
    """Writer replacing the file's content, committed as deltas on close."""
    meta_for_hash(node, meta_id)
    return FileWriter(node, listener, meta_id)


def watch_file(node: Node, meta_id: bytes, callback: Callable[[], None]) -> Channel:
    """
    Call ``callback`` when the file's delta channel moves.

    Returns the watched channel; poll it with ``node.refresh(channel)``.
    """
    channel = node.open_channel(delta_channel_name(meta_id))
    channel.add_trigger(callback)
    return channel


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def all_metas(node: Node) -> Iterator[Tuple[BlockEntry, Meta]]:
    """Every Meta the caller created on its own Meta channel, newest first."""
    metas = node.open_channel(meta_channel_name(node.alias))
    for entry, _, payload in node.read(metas):
        if entry.record.creator != node.alias:
            continue
        yield entry, Meta.parse(payload)


def meta_for_hash(node: Node, meta_id: bytes) -> Tuple[BlockEntry, Meta]:
    """The caller's Meta with record hash ``meta_id``. Raises ``NotFoundError``."""
    entry, _, meta = owned_meta(node, meta_id)
    return entry, meta


def owned_meta(node: Node, meta_id: bytes) -> Tuple[BlockEntry, Optional[bytes], Meta]:
    metas = node.open_channel(meta_channel_name(node.alias))
    entry, key, payload = next(node.read(metas, meta_id))
    if entry.record.creator != node.alias:
        raise NotFoundError(
            context=f"{encode_hash(meta_id)} on {metas.name} was written by {entry.record.creator!r}"
        )
    return entry, key, Meta.parse(payload)


def chunk_entries(node: Node, references: Sequence[Reference]) -> Iterator[Tuple[Channel, BlockEntry]]:
    """
    ``(channel, entry)`` for each reference, in reference order.

    Each referenced channel is walked once. Raises ``NotFoundError`` for a
    reference whose record is not on its channel.
    """
    indexes: Dict[str, Tuple[Channel, Dict[bytes, BlockEntry]]] = {}
    for reference in references:
        if reference.channel_name not in indexes:
            channel = node.open_channel(reference.channel_name)
            indexes[reference.channel_name] = (channel, node.index(channel))
        channel, entries = indexes[reference.channel_name]
        entry = entries.get(reference.record_hash) if reference.record_hash else None
        if entry is None:
            raise NotFoundError(context=f"chunk {reference}")
        yield channel, entry


def iter_chunks(
    node: Node,
    references: Sequence[Reference],
    keys: Optional[Sequence[Optional[bytes]]] = None,
) -> Iterator[bytes]:
    """
    Decrypted chunk bytes in reference order.

    With ``keys`` (from a Share) chunks open with the parallel raw key;
    otherwise with the caller's own access entry.
    """
    for index, (channel, entry) in enumerate(chunk_entries(node, references)):
        if keys is None:
            _, data = node.open_entry(channel, entry)
        else:
            data = node.open_entry_with_key(channel, entry, keys[index])
        yield data


def iter_deltas(
    node: Node,
    meta_entry: BlockEntry,
    keys: Optional[Dict[bytes, Optional[bytes]]] = None,
) -> Iterator[Delta]:
    """Deltas for a Meta in append order, only those written by its creator."""
    channel = node.open_channel(delta_channel_name(meta_entry.record_hash))
    creator = meta_entry.record.creator
    if keys is None:
        opened = ((entry, payload) for entry, _, payload in node.read(channel, chronological=True))
    else:
        opened = node.read_with_keys(channel, keys, chronological=True)
    for entry, payload in opened:
        if entry.record.creator != creator:
            logger.debug("Ignoring delta by %s on file of %s", entry.record.creator, creator)
            continue
        yield Delta.parse(payload)


def write_content(
    chunks: Iterator[bytes],
    deltas: List[Delta],
    writer: BinaryIO,
) -> int:
    """Stream chunks straight through, or replay deltas over them. Returns bytes written."""
    count = 0
    if not deltas:
        for data in chunks:
            writer.write(data)
            count += len(data)
        return count
    content = reconstruct(deltas, b"".join(chunks))
    writer.write(content)
    return len(content)


def read_file(node: Node, meta_id: bytes, writer: BinaryIO) -> int:
    """Write the current content of one of the caller's files. Returns bytes written."""
    entry, _, meta = owned_meta(node, meta_id)
    deltas = list(iter_deltas(node, entry))
    count = write_content(iter_chunks(node, entry.record.reference), deltas, writer)
    logger.debug("Read %s (%s): %d bytes, %d deltas", meta.name, encode_hash(meta_id), count, len(deltas))
    return count


def read_bytes(node: Node, meta_id: bytes) -> bytes:
    buffer = io.BytesIO()
    read_file(node, meta_id, buffer)
    return buffer.getvalue()
