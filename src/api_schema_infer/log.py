"""Loguru sink setup for the CLI."""

import sys

from loguru import logger

LOG_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - {message}"


def configure_logging(level: str = "WARNING") -> None:
    """Replace loguru's default sink with a single stderr sink at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=None)
