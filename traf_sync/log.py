"""Loguru sink setup for the command-line entry points."""

from __future__ import annotations

import sys

from loguru import logger

from .config import LOG_LEVEL

DEFAULT_LOG_LEVEL = "WARNING"

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str | None = None) -> None:
    """Replace loguru's default sink with a single stderr sink at ``level``.

    An unknown level name falls back to WARNING instead of failing the run.
    """
    requested = (level or LOG_LEVEL).upper()
    try:
        logger.level(requested)
        effective = requested
    except ValueError:
        effective = DEFAULT_LOG_LEVEL

    logger.remove()
    logger.add(sys.stderr, level=effective, format=LOG_FORMAT)
    if effective != requested:
        logger.warning(f"Unknown log level '{requested}'; using {DEFAULT_LOG_LEVEL}")
