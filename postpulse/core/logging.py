"""Structured logging configuration using dictConfig.

Production writes one JSON object per record, so ``extra`` fields become
keys. The console format has no place for them, so ``ContextFilter``
renders the known ones into a ``context`` suffix.
"""
import logging
import logging.config
import sys
from typing import Any, Dict, Optional

from .settings import get_settings

settings = get_settings()

# extra fields attached by the ingest and API code
CONTEXT_FIELDS = ("error_kind", "query", "operation", "external_id", "window", "status_code")

# third-party loggers and the level they are capped at
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "sqlalchemy.engine": "WARNING",
}


class ContextFilter(logging.Filter):
    """Render known ``extra`` fields as `` [key=value ...]`` on ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        pairs = [
            f"{field}={getattr(record, field)!r}"
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        ]
        record.context = f" [{' '.join(pairs)}]" if pairs else ""
        return True


def _console_format(service_name: Optional[str]) -> str:
    service = f" [{service_name}]" if service_name else ""
    return f"%(asctime)s{service} [%(levelname)s] %(name)s: %(message)s%(context)s"


def _json_format(service_name: Optional[str]) -> str:
    service = f" {service_name}" if service_name else ""
    return f"%(asctime)s %(levelname)s{service} %(name)s %(message)s"


def get_logging_config(service_name: Optional[str] = None) -> Dict[str, Any]:
    """Get logging configuration dictionary."""
    production = settings.environment == "production"

    loggers = {
        "postpulse": {"level": settings.log_level, "handlers": ["console"], "propagate": False},
    }
    for name, level in LIBRARY_LEVELS.items():
        loggers[name] = {"level": level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": ContextFilter},
        },
        "formatters": {
            "json": {
                "format": _json_format(service_name),
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "class": "pythonjsonlogger.json.JsonFormatter"
            },
            "console": {
                "format": _console_format(service_name),
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "json" if production else "console",
                "filters": [] if production else ["context"],
                "stream": sys.stdout
            }
        },
        "loggers": loggers,
        "root": {
            "level": settings.log_level,
            "handlers": ["console"]
        }
    }


def setup_logging(service_name: Optional[str] = None) -> None:
    """Configure structured logging using dictConfig."""
    logging.config.dictConfig(get_logging_config(service_name))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
