"""Logging setup for the freightledger package logger."""

import logging
import sys

LOGGER_NAME = "freightledger"

_TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"
_JSON_FORMAT = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'


def configure_logging(level: int | str = logging.INFO, json_format: bool = False) -> logging.Logger:
    """
    Attach a single stdout handler to the package logger.

    Calling this again swaps the handler rather than adding a second one,
    so every FreightLedger instance can configure logging safely.

    Args:
        level: Level name or number, e.g. ``"DEBUG"`` or ``logging.INFO``
        json_format: Emit one JSON object per line for log shippers
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(logging.Formatter(_JSON_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger, or its ``name`` child."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}" if name else LOGGER_NAME)
