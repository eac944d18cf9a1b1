"""Logging helpers.

Library modules log through the standard ``logging`` module. The
application routes those records into loguru so that every message ends
up in the same sinks.
"""

import inspect
import logging
from typing import Optional

from loguru import logger

PACKAGE_LOGGER = "hdrflow"


class InterceptHandler(logging.Handler):
    """Forwards standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module
        frame, depth = inspect.currentframe(), 0
        while frame is not None and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def intercept_stdlib_logging(level: str = "INFO") -> None:
    """Route the package's standard loggers through loguru.

    Args:
        level: Minimum level passed on to loguru
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers = [InterceptHandler()]
    package_logger.setLevel(level.upper())
    package_logger.propagate = False


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Get a package logger.

    Args:
        name: Logger name (usually __name__)
        level: Optional log level to set

    Returns:
        Logger whose records reach loguru once interception is installed
    """
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    log = logging.getLogger(name)
    if level is not None:
        log.setLevel(level)
    return log
