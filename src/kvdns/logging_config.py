"""Process-wide logging setup."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def init_logging(level: str = "INFO") -> None:
    """Configure the root logger once per process.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
    # The Cassandra driver logs every connection event at INFO.
    logging.getLogger("cassandra").setLevel(max(logging.WARNING, logging.getLogger().level))
