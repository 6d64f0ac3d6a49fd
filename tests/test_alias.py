import pytest

from spaceclient.alias import ALIAS_CHANNEL, Alias, lookup_alias, register_alias, resolve_public_key
from spaceclient.cache import MemoryCache
from spaceclient.errors import AliasTakenError, UnknownAliasError
from spaceclient.keys import Identity, public_bytes
from spaceclient.node import Node
from spaceclient.records import timestamp


def test_register_and_resolve(alice, bob):
    key = resolve_public_key(bob, "alice")
    assert public_bytes(key) == public_bytes(alice.identity.encryption_public_key)
    registered = lookup_alias(bob, "alice")
    assert registered.signing_key == public_bytes(alice.identity.signing_public_key)


def test_register_is_idempotent(alice):
    assert register_alias(alice) is None


def test_alias_taken(alice, network, config):
    impostor = Node(Identity.generate("alice"), MemoryCache(), network, config)
    with pytest.raises(AliasTakenError):
        register_alias(impostor)


def test_unknown_alias(alice):
    with pytest.raises(UnknownAliasError):
        resolve_public_key(alice, "dave")


def test_own_alias_resolves_without_registration(offline_node):
    key = resolve_public_key(offline_node, offline_node.alias)
    assert public_bytes(key) == public_bytes(offline_node.identity.encryption_public_key)


def test_forged_registration_ignored(alice, make_node):
    mallory = make_node("mallory")
    # Mallory claims dave's alias under her own signature.
    fake = Alias(
        alias="dave",
        encryption_key=public_bytes(mallory.identity.encryption_public_key),
        signing_key=public_bytes(mallory.identity.signing_public_key),
    )
    channel = mallory.open_channel(ALIAS_CHANNEL)
    mallory.write(timestamp(), channel, None, None, fake.serialize())
    mallory.mine(channel)
    mallory.push(channel)
    assert lookup_alias(alice, "dave") is None


def test_malformed_alias_record_skipped(alice, caplog):
    channel = alice.open_channel(ALIAS_CHANNEL)
    alice.write(timestamp(), channel, None, None, b"not json")
    alice.mine(channel)
    assert lookup_alias(alice, "dave") is None
    assert "malformed alias record" in caplog.text
    assert lookup_alias(alice, "alice") is not None
