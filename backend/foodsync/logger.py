"""
Logging configuration for foodsync.

Provides a centralized logger that can be configured via the LOG_LEVEL
environment variable.
"""
import logging
import sys

from .config import LOG_LEVEL

logger = logging.getLogger("foodsync")
logger.setLevel(LOG_LEVEL)

if not logger.handlers:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

# Prevent propagation to root logger (avoid duplicate logs)
logger.propagate = False


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Optional name for the logger (will be appended to 'foodsync')

    Returns:
        Logger instance
    """
    if name:
        if name.startswith("foodsync."):
            name = name[len("foodsync."):]
        return logging.getLogger(f"foodsync.{name}")
    return logger
