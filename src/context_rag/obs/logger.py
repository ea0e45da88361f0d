"""Logging configuration."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3")
HANDLER_NAME = "context_rag"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install a single stdout handler on the root logger.

    Calling it again replaces the handler installed by the previous call.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if handler.get_name() == HANDLER_NAME:
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
