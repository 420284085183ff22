"""Logging setup for the field_report package."""

import logging

from field_report.config import Config

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> logging.Logger:
    """Configure the package logger once and return it.

    Calling this again only updates the level; no second handler is
    attached.
    """
    logger = logging.getLogger("field_report")
    logger.setLevel((level or Config.LOG_LEVEL).upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
