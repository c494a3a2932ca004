"""Logging setup for command-line and embedded use."""

import logging

from codestruct.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging.

    Library code only ever calls ``logging.getLogger(__name__)``; hosts that
    want readable output call this at startup. The handler is installed once,
    the level is applied on every call.
    """
    level = level or get_settings().log_level
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric_level)
