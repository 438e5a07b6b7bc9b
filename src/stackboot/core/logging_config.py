"""Logging configuration for the stackboot CLI and library."""

from __future__ import annotations

import logging
import logging.config
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stackboot.startup.config_schema import StackConfig

logger = logging.getLogger(__name__)


def build_logging_config(level: str = "INFO", *, detailed: bool = False) -> dict[str, Any]:
    """Return the dictConfig mapping used by :func:`setup_logging`."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": (
                    "%(asctime)s | %(name)s | %(levelname)s | "
                    "%(filename)s:%(lineno)d | %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "simple": {
                "format": "%(asctime)s | %(levelname)s | %(message)s",
                "datefmt": "%H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if detailed else "simple",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "stackboot": {
                "level": level,
                "handlers": ["console"],
                "propagate": False,
            },
            "httpx": {"level": "WARNING"},
            "asyncpg": {"level": "WARNING"},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def setup_logging(config: StackConfig, *, verbose: bool = False) -> None:
    """Configure logging from the resolved stack configuration."""
    level = "DEBUG" if verbose else config.log_level
    logging.config.dictConfig(
        build_logging_config(level, detailed=verbose or config.log_detailed)
    )
    logger.debug("Logging configured with level %s", level)
