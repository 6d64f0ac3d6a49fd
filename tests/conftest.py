import pytest

from spaceclient.alias import register_alias
from spaceclient.cache import MemoryCache
from spaceclient.config import ClientConfig
from spaceclient.keys import Identity
from spaceclient.network import LoopbackNetwork
from spaceclient.node import Node

# Small enough that short test files span several chunks.
CHUNK_SIZE = 4


@pytest.fixture
def config(tmp_path):
    return ClientConfig(root_directory=tmp_path, chunk_size=CHUNK_SIZE)


@pytest.fixture
def network():
    """Loopback network with one relay cache all nodes push to."""
    return LoopbackNetwork([MemoryCache()])


@pytest.fixture
def make_node(network, config):
    def _make(alias, register=True):
        node = Node(Identity.generate(alias), MemoryCache(), network, config)
        if register:
            register_alias(node)
        return node
    return _make


@pytest.fixture
def alice(make_node):
    return make_node("alice")


@pytest.fixture
def bob(make_node):
    return make_node("bob")


@pytest.fixture
def carol(make_node):
    return make_node("carol")


@pytest.fixture
def offline_node(config):
    return Node(Identity.generate("solo"), MemoryCache(), None, config)
