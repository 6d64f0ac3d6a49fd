"""Client configuration and logging setup."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Largest payload a single record carries; records on the substrate are
# capped at 2 MiB and the envelope needs headroom for access entries.
DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024 - 1024
DEFAULT_ROOT_DIRECTORY = "~/.space"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ClientConfig:
    """Settings shared by every operation a node performs."""

    root_directory: Path
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.root_directory = Path(self.root_directory).expanduser()
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        self.log_level = self.log_level.upper()

    @property
    def cache_directory(self) -> Path:
        return self.root_directory / "cache"

    @property
    def keys_directory(self) -> Path:
        return self.root_directory / "keys"

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "ClientConfig":
        """Build a config from ``SPACE_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            ClientConfig: Config with defaults for unset variables.

        Raises:
            ValueError: If ``SPACE_CHUNK_SIZE`` is not a positive integer.
        """
        env = os.environ if environ is None else environ
        chunk_raw = env.get("SPACE_CHUNK_SIZE")
        try:
            chunk_size = int(chunk_raw) if chunk_raw else DEFAULT_CHUNK_SIZE
        except ValueError:
            raise ValueError(f"SPACE_CHUNK_SIZE must be an integer, got {chunk_raw!r}") from None
        return cls(
            root_directory=Path(env.get("SPACE_ROOT_DIRECTORY", DEFAULT_ROOT_DIRECTORY)),
            chunk_size=chunk_size,
            log_level=env.get("SPACE_LOG_LEVEL", "INFO"),
        )


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a stderr handler to the ``spaceclient`` logger once.

    Args:
        level: Log level name; defaults to ``SPACE_LOG_LEVEL`` or INFO.

    Returns:
        The configured package logger.
    """
    if level is None:
        level = os.getenv("SPACE_LOG_LEVEL", "INFO")
    logger = logging.getLogger("spaceclient")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
