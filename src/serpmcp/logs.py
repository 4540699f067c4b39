from __future__ import annotations

import sys

from loguru import logger

_FORMAT = "{time:HH:mm:ss} | {level: <8} | {name}:{function} - {message}"


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr only; stdout belongs to the JSON-RPC stream."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=_FORMAT, backtrace=False, diagnose=False)
