"""
Phosphor Logging

Configures the "phosphor" logger from the stored AppConfig. Modules log
through logging.getLogger(__name__), so everything under phosphor.* ends up
here. log_level sets the threshold; verbose lowers it to DEBUG so every
client command is logged as it runs. Blank passwords given with -p are
masked on each record before it is formatted.
"""

import logging
from typing import Optional

from ..models.config import AppConfig
from ..services.process_runner import redact

# Package logger
logger = logging.getLogger("phosphor")

# Thread name separates StreamWorker output from the UI thread
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


class PasswordFilter(logging.Filter):
    """Mask T5577/EM4305 passwords wherever a command ends up in a message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def level_for(config: AppConfig) -> int:
    """DEBUG when verbose, else the stored level name (WARNING if unknown)."""
    if config.verbose:
        return logging.DEBUG
    level = logging.getLevelName((config.log_level or "").upper())
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(
    config: AppConfig,
    handler: Optional[logging.Handler] = None,
) -> logging.Handler:
    """
    Configure phosphor logging from the application settings.

    Calling it again replaces the handler from the previous call.

    Args:
        config: Settings providing log_level and verbose
        handler: Destination for records; stderr if not provided

    Returns:
        The installed handler
    """
    handler = handler or logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(PasswordFilter())

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level_for(config))
    logger.propagate = False
    return handler
