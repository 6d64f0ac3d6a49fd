"""
test_search.py — Tags and file search
"""

import io
import unittest

from spaceclient.cache import MemoryCache
from spaceclient.config import ClientConfig
from spaceclient.alias import register_alias
from spaceclient.errors import NotFoundError
from spaceclient.files import add
from spaceclient.keys import Identity
from spaceclient.network import LoopbackNetwork
from spaceclient.node import Node
from spaceclient.search import (
    NameFilter,
    TagFilter,
    TypeFilter,
    add_tag,
    all_tags_for_hash,
    ranked_search,
    search_meta,
    search_tag,
)
from spaceclient.sharing import share


def _add(node, name, mime, data=b"data"):
    return add(node, None, name, mime, io.BytesIO(data)).record_hash


class TestSearch(unittest.TestCase):
    def setUp(self):
        network = LoopbackNetwork([MemoryCache()])
        config = ClientConfig(root_directory=".", chunk_size=64)
        self.alice = Node(Identity.generate("alice"), MemoryCache(), network, config)
        self.bob = Node(Identity.generate("bob"), MemoryCache(), network, config)
        register_alias(self.alice)
        register_alias(self.bob)

        self.notes = _add(self.alice, "notes.txt", "text/plain")
        self.photo = _add(self.alice, "photo.png", "image/png")
        self.notes2 = _add(self.alice, "Notes-2.md", "text/markdown")
        add_tag(self.alice, None, self.photo, ["x"])
        add_tag(self.alice, None, self.notes, ["x", "y"])

    def hashes(self, results):
        return {entry.record_hash for entry, _ in results}

    def test_tags_for_hash(self):
        values = sorted(tag.value for _, tag in all_tags_for_hash(self.alice, self.notes))
        self.assertEqual(values, ["x", "y"])
        self.assertEqual(list(all_tags_for_hash(self.alice, self.notes2)), [])

    def test_tag_search_precision(self):
        self.assertEqual(self.hashes(search_tag(self.alice, TagFilter("x"))), {self.photo, self.notes})
        self.assertEqual(self.hashes(search_tag(self.alice, TagFilter("y"))), {self.notes})
        self.assertEqual(self.hashes(search_tag(self.alice, TagFilter("z"))), set())

    def test_tag_search_yields_each_meta_once(self):
        found = [entry.record_hash for entry, _ in search_tag(self.alice, TagFilter("x", "y"))]
        self.assertEqual(sorted(found), sorted([self.photo, self.notes]))

    def test_name_search_is_case_insensitive_substring(self):
        self.assertEqual(self.hashes(search_meta(self.alice, NameFilter("NOTES"))), {self.notes, self.notes2})
        self.assertEqual(self.hashes(search_meta(self.alice, NameFilter("png", "md"))), {self.photo, self.notes2})

    def test_type_search_is_exact(self):
        self.assertEqual(self.hashes(search_meta(self.alice, TypeFilter("text/plain"))), {self.notes})
        self.assertEqual(self.hashes(search_meta(self.alice, TypeFilter("text"))), set())

    def test_ranked_search_order(self):
        results = ranked_search(self.alice, names=["notes"], tags=["x", "y"])
        self.assertEqual([r.meta_id for r in results], [self.notes, self.notes2, self.photo])
        self.assertEqual([r.matches for r in results], [3, 1, 1])
        self.assertEqual(results[0].to_dict()["name"], "notes.txt")

    def test_ranked_search_no_terms(self):
        self.assertEqual(ranked_search(self.alice), [])

    def test_tags_are_private_to_tagger(self):
        share(self.alice, None, self.notes, ["bob"])
        self.assertEqual(list(all_tags_for_hash(self.bob, self.notes)), [])
        add_tag(self.bob, None, self.notes, ["mine"])
        self.assertEqual([t.value for _, t in all_tags_for_hash(self.bob, self.notes)], ["mine"])
        self.assertEqual(sorted(t.value for _, t in all_tags_for_hash(self.alice, self.notes)), ["x", "y"])

    def test_search_covers_shared_files(self):
        share(self.alice, None, self.photo, ["bob"])
        self.assertEqual(self.hashes(search_meta(self.bob, TypeFilter("image/png"))), {self.photo})
        add_tag(self.bob, None, self.photo, ["cat"])
        self.assertEqual(self.hashes(search_tag(self.bob, TagFilter("cat"))), {self.photo})

    def test_tag_unknown_meta(self):
        with self.assertRaises(NotFoundError):
            add_tag(self.bob, None, self.notes, ["x"])


def test_tag_references_meta(alice):
    meta_id = _add(alice, "a", "text/plain")
    refs = add_tag(alice, None, meta_id, ["one", "two"])
    assert len(refs) == 2
    entries = list(all_tags_for_hash(alice, meta_id))
    assert all(entry.record.references_hash(meta_id) for entry, _ in entries)


def test_empty_tag_list(alice):
    meta_id = _add(alice, "a", "text/plain")
    assert add_tag(alice, None, meta_id, []) == []
