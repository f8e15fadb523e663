"""
JSON logging for MediaCheck.

Every record is a single JSON object with ``timestamp``, ``level``, ``logger``,
``message``, ``service`` and ``environment``, plus any ``extra={...}`` fields.
Output goes to stdout and to ``LOG_DIR/mediacheck.log`` (rotated at 5 MB).
The error service keeps its own ``errors.log`` next to it.
"""

import logging
import logging.config

from pythonjsonlogger.json import JsonFormatter

from mediacheck import config

LOG_FILE_NAME = "mediacheck.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3


class MediaCheckJsonFormatter(JsonFormatter):
    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["logger"] = log_record.pop("name", record.name)
        log_record["service"] = "mediacheck"
        log_record["environment"] = config.ENVIRONMENT


def default_log_level() -> str:
    if config.LOG_LEVEL:
        return config.LOG_LEVEL
    return "DEBUG" if config.is_development() else "INFO"


def setup_logging(level: str | None = None) -> None:
    """Install the JSON handlers. Called from the application lifespan."""
    log_level = (level or default_log_level()).upper()
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)

    handlers = ["console", "file"]
    quiet = {"handlers": handlers, "level": "WARNING", "propagate": False}
    verbose = {"handlers": handlers, "level": log_level, "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": MediaCheckJsonFormatter,
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                    "rename_fields": {"asctime": "timestamp"},
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "stream": "ext://sys.stdout",
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "json",
                    "filename": str(config.LOG_DIR / LOG_FILE_NAME),
                    "maxBytes": LOG_FILE_MAX_BYTES,
                    "backupCount": LOG_FILE_BACKUPS,
                    "encoding": "utf-8",
                    "delay": True,
                },
            },
            "root": {"handlers": handlers, "level": log_level},
            "loggers": {
                "mediacheck": verbose,
                "uvicorn": verbose,
                "uvicorn.error": verbose,
                "uvicorn.access": quiet,
                "apscheduler": quiet,
                "multipart": quiet,
                "PIL": quiet,
            },
        }
    )
