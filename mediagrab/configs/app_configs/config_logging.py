"""Logging configuration"""

import logging
import sys
from logging.config import dictConfig
from typing import Any

from dockerflow import logging as dockerflow_logging

from mediagrab.configs import settings

# Handler used for each supported `logging.format`.
FORMAT_HANDLERS: dict[str, str] = {
    "mozlog": "mozlog-stdout",
    "pretty": "rich-console",
}

# Third-party loggers that only report warnings and errors.
QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "tldextract")


def configure_logging() -> None:
    """Configure the mediagrab loggers.

    `mozlog` writes one JSON document per record to stdout, `pretty` renders records
    on the terminal with rich. Production only accepts `mozlog`.
    """
    log_format = settings.logging.format
    if log_format not in FORMAT_HANDLERS:
        raise ValueError(
            f"Invalid log format: {log_format}."
            f" Should be one of {', '.join(repr(name) for name in FORMAT_HANDLERS)}."
        )
    if settings.current_env.lower() == "production" and log_format != "mozlog":
        raise ValueError("Log format must be 'mozlog' in production")

    level = settings.logging.level
    loggers: dict[str, Any] = {
        "mediagrab": {
            "handlers": [FORMAT_HANDLERS[log_format]],
            "level": level,
            "propagate": settings.logging.can_propagate,
        }
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"handlers": ["stderr-warnings"], "level": "WARNING", "propagate": False}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "message-only": {"format": "%(message)s"},
                "mozlog": {"()": GCPCompatibleJSONFormatter, "logger_name": "mediagrab"},
            },
            "handlers": {
                "mozlog-stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "mozlog",
                    "level": level,
                    "stream": sys.stdout,
                },
                "rich-console": {
                    "class": "rich.logging.RichHandler",
                    "formatter": "message-only",
                    "level": level,
                    "rich_tracebacks": True,
                },
                "stderr-warnings": {
                    "class": "logging.StreamHandler",
                    "formatter": "message-only",
                    "level": "WARNING",
                    "stream": sys.stderr,
                },
            },
            "loggers": loggers,
        }
    )


class GCPCompatibleJSONFormatter(dockerflow_logging.JsonLogFormatter):
    """MozLog JSON formatter that also reports the numeric severity read by GCP."""

    SEVERITY_BY_LEVEL: dict[int, int] = {
        logging.NOTSET: 0,
        logging.DEBUG: 100,
        logging.INFO: 200,
        logging.WARNING: 400,
        logging.ERROR: 500,
        logging.CRITICAL: 600,
    }

    def convert_record(self, record):
        """Add the lower-case `severity` field next to the MozLog `Severity`."""
        out = super().convert_record(record)
        out["severity"] = self.SEVERITY_BY_LEVEL.get(record.levelno, 0)
        return out
