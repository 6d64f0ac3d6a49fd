"""
delta.py — Edit replay engine

A file's current content is its base (chunk bytes, possibly empty) with
every Delta on its delta channel applied in append order. Replay is a
pure fold; the same deltas over the same base always give the same bytes.

Bounds policy:
  - offset beyond the buffer end, or a negative field: MalformedDeltaError
  - delete running past the buffer end: clamped to the end
"""

from __future__ import annotations
from typing import Iterable, List

from .errors import MalformedDeltaError
from .entities import Delta


def apply_delta(buffer: bytes, delta: Delta) -> bytes:
    """Return ``buffer[:offset] + insert + buffer[offset + delete:]``."""
    if delta.offset < 0 or delta.delete < 0:
        raise MalformedDeltaError(context=f"offset={delta.offset} delete={delta.delete}")
    if delta.offset > len(buffer):
        raise MalformedDeltaError(context=f"offset={delta.offset} buffer length={len(buffer)}")
    end = min(delta.offset + delta.delete, len(buffer))
    return buffer[:delta.offset] + delta.insert + buffer[end:]


def reconstruct(deltas: Iterable[Delta], base: bytes = b"") -> bytes:
    """Fold ``apply_delta`` over ``deltas`` in the order given."""
    buffer = bytes(base)
    for delta in deltas:
        buffer = apply_delta(buffer, delta)
    return buffer


def _split_insert(offset: int, delete: int, insert: bytes, max_insert: int) -> List[Delta]:
    if max_insert <= 0:
        raise ValueError(f"max_insert must be positive, got {max_insert}")
    if not insert:
        return [Delta(offset=offset, delete=delete)]
    deltas = []
    for start in range(0, len(insert), max_insert):
        piece = insert[start:start + max_insert]
        deltas.append(Delta(offset=offset + start, delete=delete if start == 0 else 0, insert=piece))
    return deltas


def compute_deltas(old: bytes, new: bytes, max_insert: int) -> List[Delta]:
    """
    Smallest single-region edit turning ``old`` into ``new``.

    The common prefix and suffix are kept; the differing middle becomes one
    delete plus an insert split into ``max_insert``-sized pieces. Returns
    an empty list when the contents are equal.
    """
    if old == new:
        return []
    limit = min(len(old), len(new))
    prefix = 0
    while prefix < limit and old[prefix] == new[prefix]:
        prefix += 1
    suffix = 0
    while (
        suffix < limit - prefix
        and old[len(old) - 1 - suffix] == new[len(new) - 1 - suffix]
    ):
        suffix += 1
    delete = len(old) - prefix - suffix
    insert = new[prefix:len(new) - suffix]
    return _split_insert(prefix, delete, insert, max_insert)
