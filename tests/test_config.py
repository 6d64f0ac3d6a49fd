"""
test_config.py — Client configuration and logging setup
"""

import logging
from pathlib import Path

import pytest

from spaceclient.config import DEFAULT_CHUNK_SIZE, ClientConfig, configure_logging


def test_defaults_from_empty_environment():
    config = ClientConfig.from_env({})
    assert config.root_directory == Path("~/.space").expanduser()
    assert config.chunk_size == DEFAULT_CHUNK_SIZE
    assert config.log_level == "INFO"


def test_environment_overrides(tmp_path):
    config = ClientConfig.from_env({
        "SPACE_ROOT_DIRECTORY": str(tmp_path),
        "SPACE_CHUNK_SIZE": "1024",
        "SPACE_LOG_LEVEL": "debug",
    })
    assert config.root_directory == tmp_path
    assert config.chunk_size == 1024
    assert config.log_level == "DEBUG"
    assert config.cache_directory == tmp_path / "cache"
    assert config.keys_directory == tmp_path / "keys"


def test_bad_chunk_size_rejected():
    with pytest.raises(ValueError):
        ClientConfig.from_env({"SPACE_CHUNK_SIZE": "lots"})
    with pytest.raises(ValueError):
        ClientConfig(root_directory=Path("."), chunk_size=0)


def test_configure_logging_attaches_one_handler():
    logger = configure_logging("warning")
    count = len(logger.handlers)
    assert configure_logging("DEBUG") is logger
    assert len(logger.handlers) == count
    assert logger.level == logging.DEBUG
