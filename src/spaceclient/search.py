"""
search.py — Tags and file search

Implements:
  - add_tag():          one Tag record per value on ``Space-Tag-<metaId>``
  - all_tags_for_hash(): the caller's readable tags for one file
  - search_meta():      Metas passing a name or type filter
  - search_tag():       Metas carrying a matching tag
  - ranked_search():    combined name/type/tag search ordered by relevance

Searches cover the caller's own files and files shared with the caller.
Tags are encrypted for the tagger only, so each client sees its own tags.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .canonical_json import encode_hash
from .entities import Meta, Tag, meta_channel_name, tag_channel_name
from .errors import BatchError, NotFoundError, SpaceError
from .files import all_metas, owned_meta
from .node import MiningListener, Node
from .records import BlockEntry, Reference, timestamp
from .sharing import shared_meta_for_hash, shared_metas

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class MetaFilter:
    """Predicate over a Meta."""

    def matches(self, meta: Meta) -> bool:
        raise NotImplementedError


class NameFilter(MetaFilter):
    """Case-insensitive substring match against any of ``names``."""

    def __init__(self, *names: str):
        self.names = [n.lower() for n in names]

    def matches(self, meta: Meta) -> bool:
        name = meta.name.lower()
        return any(n in name for n in self.names)


class TypeFilter(MetaFilter):
    def __init__(self, *types: str):
        self.types = set(types)

    def matches(self, meta: Meta) -> bool:
        return meta.type in self.types


class TagFilter:
    def __init__(self, *values: str):
        self.values = set(values)

    def matches(self, tag: Tag) -> bool:
        return tag.value in self.values


@dataclass
class SearchResult:
    entry: BlockEntry
    meta: Meta
    matches: int

    @property
    def meta_id(self) -> bytes:
        return self.entry.record_hash

    def to_dict(self) -> Dict[str, object]:
        return {
            "meta_id": encode_hash(self.meta_id),
            "timestamp": self.entry.record.timestamp,
            "creator": self.entry.record.creator,
            "name": self.meta.name,
            "type": self.meta.type,
            "size": self.meta.size,
            "matches": self.matches,
        }


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def _any_meta(node: Node, meta_id: bytes) -> BlockEntry:
    try:
        entry, _, _ = owned_meta(node, meta_id)
        return entry
    except NotFoundError:
        entry, _, _ = shared_meta_for_hash(node, meta_id)
        return entry


def add_tag(
    node: Node,
    listener: Optional[MiningListener],
    meta_id: bytes,
    tags: Sequence[str],
) -> List[Reference]:
    """
    Tag one of the caller's own or shared files, mining each tag record.

    Raises ``NotFoundError`` when the caller can see no Meta with that
    hash, and ``BatchError`` (with the written references) when some
    values fail.
    """
    meta_entry = _any_meta(node, meta_id)
    meta_reference = Reference(
        timestamp=meta_entry.record.timestamp,
        channel_name=meta_channel_name(meta_entry.record.creator),
        record_hash=meta_id,
    )
    channel = node.open_channel(tag_channel_name(meta_id))
    acl = node.acl()

    references: List[Reference] = []
    succeeded: Dict[str, Reference] = {}
    failures: Dict[str, SpaceError] = {}
    for value in tags:
        try:
            reference = node.write(timestamp(), channel, acl, [meta_reference], Tag(value).serialize())
            node.mine(channel, listener)
            node.push(channel)
        except SpaceError as e:
            logger.warning("Tagging %s with %r failed: %s", encode_hash(meta_id), value, e)
            failures[value] = e
            continue
        references.append(reference)
        succeeded[value] = reference

    if failures:
        raise BatchError(failures, succeeded)
    return references


def all_tags_for_hash(node: Node, meta_id: bytes) -> Iterator[Tuple[BlockEntry, Tag]]:
    """Tags the caller can read that reference ``meta_id``, newest first."""
    channel = node.open_channel(tag_channel_name(meta_id))
    for entry, _, payload in node.read(channel):
        if entry.record.references_hash(meta_id):
            yield entry, Tag.parse(payload)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def visible_metas(node: Node) -> Iterator[Tuple[BlockEntry, Meta]]:
    """The caller's own Metas, then Metas shared with the caller."""
    seen = set()
    for entry, meta in all_metas(node):
        seen.add(entry.record_hash)
        yield entry, meta
    for entry, meta, _ in shared_metas(node):
        if entry.record_hash not in seen:
            seen.add(entry.record_hash)
            yield entry, meta


def search_meta(node: Node, meta_filter: MetaFilter) -> Iterator[Tuple[BlockEntry, Meta]]:
    for entry, meta in visible_metas(node):
        if meta_filter.matches(meta):
            yield entry, meta


def _matching_tags(node: Node, meta_id: bytes, tag_filter: TagFilter) -> set:
    return {tag.value for _, tag in all_tags_for_hash(node, meta_id) if tag_filter.matches(tag)}


def search_tag(node: Node, tag_filter: TagFilter) -> Iterator[Tuple[BlockEntry, Meta]]:
    """Metas with at least one matching tag, each yielded once."""
    for entry, meta in visible_metas(node):
        if _matching_tags(node, entry.record_hash, tag_filter):
            yield entry, meta


def ranked_search(
    node: Node,
    names: Iterable[str] = (),
    types: Iterable[str] = (),
    tags: Iterable[str] = (),
) -> List[SearchResult]:
    """
    Combined search, most relevant first.

    A file scores one point for the name filter, one for the type filter
    and one per distinct matching tag value. Results are ordered by score
    descending, then Meta timestamp descending, then record hash.
    """
    names, types, tags = list(names), list(types), list(tags)
    name_filter = NameFilter(*names) if names else None
    type_filter = TypeFilter(*types) if types else None
    tag_filter = TagFilter(*tags) if tags else None

    results = []
    for entry, meta in visible_metas(node):
        matches = 0
        if name_filter is not None and name_filter.matches(meta):
            matches += 1
        if type_filter is not None and type_filter.matches(meta):
            matches += 1
        if tag_filter is not None:
            matches += len(_matching_tags(node, entry.record_hash, tag_filter))
        if matches:
            results.append(SearchResult(entry=entry, meta=meta, matches=matches))

    results.sort(key=lambda r: r.meta_id)
    results.sort(key=lambda r: (r.matches, r.entry.record.timestamp), reverse=True)
    return results
