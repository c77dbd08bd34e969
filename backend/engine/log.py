from __future__ import annotations

import sys

from loguru import logger

from engine.config import log_level

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <7}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str | None = None) -> None:
    """
    Replace loguru's default sink with a single stderr sink at `level` (env default).
    """
    logger.remove()
    logger.add(sys.stderr, level=(level or log_level()), format=LOG_FORMAT)
