from __future__ import annotations

import logging
import logging.config
from pathlib import Path

LOG_FILE_NAME = "vacation_responder.log"
NOISY_LOGGERS = ("googleapiclient.discovery_cache", "google_auth_httplib2", "urllib3")


def configure_logging(log_dir: Path, level: str = "INFO", console_level: str | None = None) -> Path:
    """Configure the rotating file log plus a console stream."""

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            },
            "console": {
                "format": "%(asctime)s | %(levelname)s | %(message)s",
                "datefmt": "%H:%M:%S",
            },
        },
        "handlers": {
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "standard",
                "filename": str(log_path),
                "maxBytes": 1_000_000,
                "backupCount": 3,
                "encoding": "utf-8",
            },
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "level": (console_level or level).upper(),
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        "root": {
            "handlers": ["file", "stdout"],
            "level": level.upper(),
        },
    }

    logging.config.dictConfig(config)
    logging.getLogger(__name__).debug("Logging to %s at %s", log_path, level)
    return log_path
