"""Logging configuration for devlink.

Every module logs through ``logging.getLogger(__name__)``, so configuring
the ``devlink`` logger once covers the whole package. The aiohttp access
log shares the same handlers and is only verbose at DEBUG.
"""

import logging
import sys
from pathlib import Path

from devlink.config import Config

LOGGER_NAME = "devlink"
ACCESS_LOGGER_NAME = "aiohttp.access"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logger: logging.Logger | None = None


def _handlers(config: Config) -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(config: Config) -> logging.Logger:
    """Configure the package logger. Later calls return the same logger.

    Args:
        config: Supplies ``log_level`` and optional ``log_file``.

    Returns:
        The ``devlink`` logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    level = getattr(logging, config.log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO

    handlers = _handlers(config)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = list(handlers)
    logger.propagate = False

    access = logging.getLogger(ACCESS_LOGGER_NAME)
    access.setLevel(logging.INFO if level <= logging.DEBUG else logging.WARNING)
    access.handlers = list(handlers)
    access.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Undo setup_logging. Used for testing."""
    global _logger
    if _logger is None:
        return

    for name in (LOGGER_NAME, ACCESS_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    _logger = None
