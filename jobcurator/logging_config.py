"""
Logging setup for command-line runs.
"""

import logging
import sys
from typing import Union

LOGGER_NAME = "jobcurator"


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Attach a stderr handler to the package logger.

    Does nothing (besides setting the level) when handlers already exist.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger
