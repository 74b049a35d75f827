"""Logging configuration shared by the API process and the Celery worker."""

import logging.config


def configure_logging(level: str = "INFO") -> None:
    """Install a single console handler for the ``marketplace`` loggers."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "marketplace": {
                    "handlers": ["console"],
                    "level": level.upper(),
                    "propagate": True,
                },
                "sqlalchemy.engine": {
                    "level": "WARNING",
                },
            },
        }
    )
