"""
test_files.py — Meta/File protocol

Covers adding files in chunk and delta mode, amending with deltas,
the buffered writer and delta-channel watching.
"""

import io

import pytest

from spaceclient.cache import MemoryCache
from spaceclient.entities import Delta, Meta, delta_channel_name, file_channel_name, meta_channel_name
from spaceclient.errors import AccessDeniedError, InvalidSignatureError, MalformedDeltaError, NotFoundError
from spaceclient.files import (
    DELTA_MODE,
    add,
    all_metas,
    append,
    iter_deltas,
    meta_for_hash,
    read_bytes,
    read_file,
    watch_file,
    write_file,
)
from spaceclient.keys import Acl, Identity
from spaceclient.node import Node
from spaceclient.records import Reference, timestamp


def _add(node, name, data, mime="text/plain", mode="chunk"):
    return add(node, None, name, mime, io.BytesIO(data), mode).record_hash


def test_add_and_amend_scenario(alice):
    meta_id = _add(alice, "test", b"testing")
    entry, meta = meta_for_hash(alice, meta_id)
    assert meta == Meta(name="test", type="text/plain", size=7)
    assert entry.record.creator == "alice"
    assert read_bytes(alice, meta_id) == b"testing"

    append(alice, None, meta_id, Delta(offset=4, delete=3, insert=b"foobar"))
    assert read_bytes(alice, meta_id) == b"testfoobar"

    append(alice, None, meta_id, Delta(delete=7))
    assert read_bytes(alice, meta_id) == b"bar"
    # The Meta itself is never rewritten.
    assert meta_for_hash(alice, meta_id)[1].size == 7


def test_chunks_are_bounded_and_sum_to_size(alice):
    data = b"0123456789abcdef!"
    meta_id = _add(alice, "long", data)
    entry, meta = meta_for_hash(alice, meta_id)
    assert meta.size == len(data)
    assert len(entry.record.reference) == 5
    assert all(r.channel_name == file_channel_name("alice") for r in entry.record.reference)
    files = alice.open_channel(file_channel_name("alice"))
    payloads = [p for _, _, p in alice.read(files)]
    assert all(len(p) <= alice.config.chunk_size for p in payloads)
    out = io.BytesIO()
    assert read_file(alice, meta_id, out) == len(data)
    assert out.getvalue() == data


def test_empty_file(alice):
    meta_id = _add(alice, "empty", b"")
    entry, meta = meta_for_hash(alice, meta_id)
    assert meta.size == 0
    assert entry.record.reference == ()
    assert read_bytes(alice, meta_id) == b""


def test_all_metas_lists_each_file(alice):
    first = _add(alice, "a.txt", b"aaa")
    second = _add(alice, "b.png", b"bbb", mime="image/png")
    listed = {entry.record_hash: (meta.name, meta.type) for entry, meta in all_metas(alice)}
    assert listed == {first: ("a.txt", "text/plain"), second: ("b.png", "image/png")}


def test_files_are_private(alice, bob):
    meta_id = _add(alice, "secret", b"classified")
    assert list(all_metas(bob)) == []
    metas = bob.open_channel(meta_channel_name("alice"))
    with pytest.raises(AccessDeniedError):
        next(bob.read(metas, meta_id))
    with pytest.raises(NotFoundError):
        read_bytes(bob, meta_id)


def test_unknown_meta(alice):
    with pytest.raises(NotFoundError):
        meta_for_hash(alice, b"\x00" * 32)
    with pytest.raises(NotFoundError):
        write_file(alice, None, b"\x00" * 32)


def test_missing_chunk_is_not_found(alice):
    metas = alice.open_channel(meta_channel_name("alice"))
    dangling = Reference(timestamp=timestamp(), channel_name=file_channel_name("alice"), record_hash=b"\x01" * 32)
    ref = alice.write(timestamp(), metas, alice.acl(), [dangling], Meta("ghost", "text/plain", 4).serialize())
    alice.mine(metas)
    with pytest.raises(NotFoundError):
        read_bytes(alice, ref.record_hash)


def test_delta_mode(alice):
    data = b"delta mode content"
    meta_id = _add(alice, "d", data, mode=DELTA_MODE)
    entry, meta = meta_for_hash(alice, meta_id)
    assert meta.size == 0
    assert entry.record.reference == ()
    deltas = list(iter_deltas(alice, entry))
    assert all(len(d.insert) <= alice.config.chunk_size and d.delete == 0 for d in deltas)
    assert read_bytes(alice, meta_id) == data


def test_unknown_mode(alice):
    with pytest.raises(ValueError):
        add(alice, None, "x", "text/plain", io.BytesIO(b"x"), mode="zip")


def test_append_rejects_negative_fields(alice):
    meta_id = _add(alice, "f", b"abc")
    with pytest.raises(MalformedDeltaError):
        append(alice, None, meta_id, Delta(offset=-1))
    assert append(alice, None, meta_id) == []


def test_append_batch_keeps_order(alice):
    meta_id = _add(alice, "f", b"")
    refs = append(alice, None, meta_id, Delta(insert=b"c"), Delta(insert=b"b"), Delta(insert=b"a"))
    stamps = [r.timestamp for r in refs]
    assert stamps == sorted(stamps) and len(set(stamps)) == 3
    assert read_bytes(alice, meta_id) == b"abc"


def test_offset_past_end_aborts_read(alice):
    meta_id = _add(alice, "f", b"abc")
    append(alice, None, meta_id, Delta(offset=10, insert=b"x"))
    with pytest.raises(MalformedDeltaError):
        read_bytes(alice, meta_id)


def test_foreign_deltas_ignored(alice, bob):
    meta_id = _add(alice, "f", b"abc")
    channel = bob.open_channel(delta_channel_name(meta_id))
    bob.write(timestamp(), channel, None, None, Delta(insert=b"evil").serialize())
    bob.mine(channel)
    bob.push(channel)
    assert read_bytes(alice, meta_id) == b"abc"


def test_write_file_commits_minimal_delta(alice):
    meta_id = _add(alice, "f", b"hello world")
    with write_file(alice, None, meta_id) as writer:
        writer.write(b"hello there world")
    assert read_bytes(alice, meta_id) == b"hello there world"
    assert writer.references
    entry, _ = meta_for_hash(alice, meta_id)
    assert len(list(iter_deltas(alice, entry))) == len(writer.references)


def test_write_file_unchanged_appends_nothing(alice):
    meta_id = _add(alice, "f", b"same")
    with write_file(alice, None, meta_id) as writer:
        writer.write(b"same")
    assert writer.references == []
    with pytest.raises(ValueError):
        writer.write(b"more")


def test_write_file_discarded_on_error(alice):
    meta_id = _add(alice, "f", b"keep")
    with pytest.raises(RuntimeError):
        with write_file(alice, None, meta_id) as writer:
            writer.write(b"lost")
            raise RuntimeError("abort")
    assert read_bytes(alice, meta_id) == b"keep"


def test_watch_file_fires_on_new_delta(alice):
    meta_id = _add(alice, "f", b"abc")
    calls = []
    channel = watch_file(alice, meta_id, lambda: calls.append(read_bytes(alice, meta_id)))
    alice.refresh(channel)
    assert calls == []
    append(alice, None, meta_id, Delta(offset=3, insert=b"d"))
    alice.refresh(channel)
    assert calls == [b"abcd"]


def test_watch_sees_remote_deltas(alice, network, config):
    meta_id = _add(alice, "f", b"abc")
    laptop = Node(alice.identity, MemoryCache(), network, config)
    calls = []
    channel = watch_file(laptop, meta_id, lambda: calls.append(True))
    append(alice, None, meta_id, Delta(insert=b">"))
    laptop.refresh(channel)
    assert calls == [True]
    assert read_bytes(laptop, meta_id) == b">abc"


def _impostor(alice, network, config):
    """A node claiming alice's alias with keys she never registered."""
    impostor = Node(Identity.generate("alice"), MemoryCache(), network, config)
    to_alice = Acl(owner="alice", members={"alice": alice.identity.encryption_public_key})
    return impostor, to_alice


def test_impostor_delta_is_not_replayed(alice, network, config):
    meta_id = _add(alice, "f", b"abc")
    impostor, to_alice = _impostor(alice, network, config)
    channel = impostor.open_channel(delta_channel_name(meta_id))
    impostor.write(timestamp(), channel, to_alice, None, Delta(insert=b"EVIL").serialize())
    impostor.mine(channel)
    impostor.push(channel)

    assert read_bytes(alice, meta_id) == b"abc"
    entry, _ = meta_for_hash(alice, meta_id)
    assert list(iter_deltas(alice, entry)) == []


def test_impostor_meta_is_not_listed(alice, network, config):
    meta_id = _add(alice, "f", b"abc")
    impostor, to_alice = _impostor(alice, network, config)
    metas = impostor.open_channel(meta_channel_name("alice"))
    forged = impostor.write(timestamp(), metas, to_alice, None, Meta("forged", "text/plain").serialize())
    impostor.mine(metas)
    impostor.push(metas)

    assert [meta.name for _, meta in all_metas(alice)] == ["f"]
    with pytest.raises(InvalidSignatureError):
        meta_for_hash(alice, forged.record_hash)
    assert meta_for_hash(alice, meta_id)[1].name == "f"


def test_metas_written_by_others_are_not_owned(alice, bob):
    to_alice = bob.acl().with_member("alice", alice.identity.encryption_public_key)
    metas = bob.open_channel(meta_channel_name("alice"))
    planted = bob.write(timestamp(), metas, to_alice, None, Meta("planted", "text/plain").serialize())
    bob.mine(metas)
    bob.push(metas)

    assert list(all_metas(alice)) == []
    with pytest.raises(NotFoundError):
        meta_for_hash(alice, planted.record_hash)


class CountingCache(MemoryCache):
    def __init__(self):
        super().__init__()
        self.block_reads = 0

    def block(self, block_hash):
        self.block_reads += 1
        return super().block(block_hash)


def test_chunks_read_with_one_walk_per_channel(config):
    cache = CountingCache()
    node = Node(Identity.generate("solo"), cache, None, config)
    data = bytes(range(64))
    meta_id = _add(node, "big", data)
    assert len(meta_for_hash(node, meta_id)[0].record.reference) == 16

    cache.block_reads = 0
    assert read_bytes(node, meta_id) == data
    # One walk of the Meta channel and one of the file channel, not one per chunk.
    assert cache.block_reads <= 4
