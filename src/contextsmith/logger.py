"""Logging configuration for contextsmith.

Only the CLI configures logging. Library modules bind
``logger = get_logger()`` and log at debug level.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "contextsmith"

CONSOLE_FORMAT = "%(message)s"
VERBOSE_FORMAT = "%(levelname)s: %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _console_level(verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    return logging.INFO


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """Configure the contextsmith logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        verbose: Show DEBUG messages on stderr
        quiet: Only show ERROR and above on stderr
        log_file: Optional file that receives every message at DEBUG

    Returns:
        The configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False
    logger.setLevel(logging.DEBUG if verbose or log_file else logging.INFO)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(_console_level(verbose, quiet))
    stderr_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if verbose else CONSOLE_FORMAT))
    logger.addHandler(stderr_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.debug(f"Logging configured (verbose={verbose}, quiet={quiet}, log_file={log_file})")
    return logger


def get_logger() -> logging.Logger:
    """The shared contextsmith logger."""
    return logging.getLogger(LOGGER_NAME)
