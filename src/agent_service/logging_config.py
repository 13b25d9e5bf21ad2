"""Process-wide logging setup, applied once at startup."""

from __future__ import annotations

import logging
import logging.config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "info") -> None:
    """Configure the root logger with a console handler."""

    resolved = logging.getLevelName(level.strip().upper())
    unknown_level = not isinstance(resolved, int)
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "level": logging.INFO if unknown_level else resolved,
                "handlers": ["console"],
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
            },
        },
    )
    if unknown_level:
        logging.getLogger(__name__).warning("Unknown LOG_LEVEL %r, using INFO", level)
