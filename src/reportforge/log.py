"""Logging setup.

modules just do `logging.getLogger(__name__)`; this wires the package logger
to a rich handler once so cli output and log lines share the same console.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "reportforge"


def configure_logging(level: str | int = "WARNING") -> logging.Logger:
    """Configure and return the package logger. Safe to call more than once."""
    logger = logging.getLogger(LOGGER_NAME)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            log_time_format="%Y-%m-%d %H:%M:%S",
        )
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
