"""Logging setup for the inkwell package.

Modules log through ``logging.getLogger(__name__)``; this installs a single
stderr handler on the ``inkwell`` logger. Journal text is never logged, only
ids, counts and error kinds.
"""

from __future__ import annotations

from logging.config import dictConfig

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "WARNING") -> None:
    """Configure the ``inkwell`` logger. Safe to call more than once."""
    level = level.upper()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": _LOG_FORMAT, "datefmt": _DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "default",
                },
            },
            "loggers": {
                "inkwell": {
                    "level": level,
                    "handlers": ["console"],
                    "propagate": False,
                },
                # litellm is chatty at INFO
                "LiteLLM": {"level": "WARNING"},
            },
        }
    )
