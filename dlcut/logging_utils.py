"""Logging utilities (simple wrapper)."""

from __future__ import annotations
import logging
import sys
from typing import Optional

_LOGGER: Optional[logging.Logger] = None


def get_logger() -> logging.Logger:
    global _LOGGER
    if _LOGGER is None:
        logger = logging.getLogger("dlcut")
        # stdout carries the IPC stream
        handler = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        _LOGGER = logger
    return _LOGGER


def set_level(level: str | int) -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    get_logger().setLevel(level)
