"""
test_canonical_json.py — Canonical encoding and hash text form
"""

import pytest

from spaceclient.canonical_json import (
    b64decode,
    b64encode,
    canonical_bytes,
    canonical_dumps,
    canonical_hash,
    canonical_loads,
    decode_hash,
    encode_hash,
)
from spaceclient.errors import SerializationError


def test_canonical_dumps_sorts_keys_without_whitespace():
    assert canonical_dumps({"b": 1, "a": [1, 2], "c": None}) == '{"a":[1,2],"b":1,"c":null}'


def test_canonical_bytes_keeps_unicode():
    assert canonical_bytes({"name": "café"}) == '{"name":"café"}'.encode("utf-8")


def test_canonical_dumps_rejects_nan():
    with pytest.raises(ValueError):
        canonical_dumps({"x": float("nan")})


def test_hash_is_order_independent():
    assert canonical_hash({"a": 1, "b": 2}) == canonical_hash({"b": 2, "a": 1})
    assert len(canonical_hash({})) == 32


def test_canonical_loads_garbage():
    with pytest.raises(SerializationError):
        canonical_loads(b"{not json")
    with pytest.raises(SerializationError):
        canonical_loads(b"\xff\xfe")


def test_b64decode_rejects_invalid():
    assert b64decode(b64encode(b"\x00\x01")) == b"\x00\x01"
    with pytest.raises(SerializationError):
        b64decode("not base64!")


def test_hash_text_form_is_unpadded_urlsafe():
    digest = bytes(range(250, 256)) + bytes(26)
    text = encode_hash(digest)
    assert "=" not in text
    assert "+" not in text and "/" not in text
    assert decode_hash(text) == digest


def test_decode_hash_invalid():
    with pytest.raises(SerializationError):
        decode_hash("a")
