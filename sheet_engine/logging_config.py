"""Logging configuration for the character sheet."""
import os
import sys

from loguru import logger

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:{line} - <level>{message}</level>"


def configure_logging():
    """Configure Loguru logging."""
    logger.remove()

    log_filter = os.getenv("LOG_FILTER", "")
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    if log_filter:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format=LOG_FORMAT,
            filter=lambda record: log_filter in record["name"]
        )
    else:
        logger.add(sys.stderr, level=log_level, format=LOG_FORMAT)

    return logger
