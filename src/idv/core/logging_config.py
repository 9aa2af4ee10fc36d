"""
Logging Configuration

Installs a single console handler for the ``idv`` loggers and uvicorn.
Modules log through ``logging.getLogger(__name__)``.
"""

import logging.config

from idv.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure process-wide logging. Safe to call more than once."""
    log_level = (level or settings.log_level).upper()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "idv": {"handlers": ["console"], "level": log_level, "propagate": False},
                "uvicorn": {"handlers": ["console"], "level": log_level, "propagate": False},
            },
            "root": {"handlers": ["console"], "level": "WARNING"},
        }
    )
