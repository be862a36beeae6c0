"""
Logging setup for the service.

Modules log through ``logging.getLogger(__name__)``; since every module lives
under the ``swearjar`` package, their records flow into the logger configured
here. ``configure_logging`` is called once when ``swearjar.main`` is imported.
"""

import logging
import sys

LOGGER_NAME = "swearjar"


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Configure the swearjar logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit one JSON object per line (for log shippers)

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Re-configuring (tests, reloads) must not stack handlers
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_format:
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a child logger of swearjar."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
