"""
Logging configuration for the Meterly API.
"""
import logging
import logging.config
import os
import sys
from typing import Any, Dict, List
from app.core.config import Settings, settings

# Per-call metering loggers, levelled by METERING_LOG_LEVEL
METERING_LOGGERS = (
    "app.services.log_queue",
    "app.services.cache_service",
    "app.services.quota_service",
)


def build_logging_config(config: Settings) -> Dict[str, Any]:
    """
    Build the dictConfig for the given settings.

    Console output is always on. When LOG_FILE is set, a size-rotated
    file handler is added next to it.
    """
    level = (config.LOG_LEVEL or ("DEBUG" if config.DEBUG else "INFO")).upper()
    handler_names: List[str] = ["console"]

    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
    }
    if config.LOG_FILE:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": config.LOG_FILE,
            "maxBytes": config.LOG_FILE_MAX_BYTES,
            "backupCount": config.LOG_FILE_BACKUP_COUNT,
            "encoding": "utf-8",
        }
        handler_names.append("file")

    loggers: Dict[str, Any] = {
        "": {
            "handlers": handler_names,
            "level": level,
            "propagate": True,
        },
        "uvicorn": {
            "handlers": handler_names,
            "level": "INFO",
            "propagate": False,
        },
        "sqlalchemy": {
            "handlers": handler_names,
            "level": "WARNING",
            "propagate": False,
        },
        "passlib": {
            "handlers": handler_names,
            "level": "WARNING",
            "propagate": False,
        },
    }
    metering_level = (config.METERING_LOG_LEVEL or level).upper()
    for name in METERING_LOGGERS:
        loggers[name] = {"level": metering_level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging(config: Settings = settings) -> None:
    """Set up logging configuration."""
    if config.LOG_FILE:
        directory = os.path.dirname(config.LOG_FILE)
        if directory:
            os.makedirs(directory, exist_ok=True)

    logging.config.dictConfig(build_logging_config(config))
