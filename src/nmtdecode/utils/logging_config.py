import logging
import logging.config
import os
from typing import Any

LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        }
    },
    "loggers": {
        "nmtdecode": {
            "handlers": ["console"],
            "propagate": False,
            "level": "INFO",
        }
    },
}

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def setup_logging() -> None:
    """Configure the package logger, honouring NMTDECODE_LOG_LEVEL when it names a valid level."""
    log_level = os.getenv("NMTDECODE_LOG_LEVEL", "INFO").upper()
    if log_level not in VALID_LEVELS:
        print(f"Invalid log level {log_level}, defaulting to INFO")
        log_level = "INFO"

    LOGGING_CONFIG["loggers"]["nmtdecode"]["level"] = log_level
    logging.config.dictConfig(LOGGING_CONFIG)


logger = logging.getLogger("nmtdecode")
