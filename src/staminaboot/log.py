"""Logging helpers for staminaboot."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "staminaboot"
_LOG_FORMAT = "[%(levelname)-5s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the staminaboot hierarchy."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(debug: bool = False, stream=None) -> logging.Logger:
    """Send staminaboot log records to stdout.

    Calling this again replaces the handler installed by a previous call.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_staminaboot", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler._staminaboot = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    return logger
