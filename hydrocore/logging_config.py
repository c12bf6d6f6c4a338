"""
Logging configuration.

Components never reach for a process-wide verbosity object: each PK,
coupler and driver takes an optional ``logging.Logger`` and defaults to a
child of the ``hydrocore`` logger configured here.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER = "hydrocore"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``hydrocore`` logger namespace.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to save logs to a file.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    # Avoid duplicate handlers when called more than once
    if logger.hasHandlers():
        logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child of the package logger, e.g. ``get_logger("pk.flow")``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
