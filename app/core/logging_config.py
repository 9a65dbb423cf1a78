"""
Logging setup shared by the HTTP layer and the import batch workers.

Log lines carry the thread name so output from concurrent batches (and from
row workers inside one batch) can be told apart.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(threadName)s | %(message)s"

# Third-party loggers that are too chatty at INFO for an import run.
QUIET_LIBRARIES: Dict[str, str] = {
    "sqlalchemy.engine": "WARNING",
    "multipart": "WARNING",
    "openpyxl": "WARNING",
}

_configured_level: Optional[str] = None


def build_logging_config(level: str) -> dict:
    loggers = {name: {"level": library_level} for name, library_level in QUIET_LIBRARIES.items()}
    loggers["app"] = {"level": level}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "import": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "import",
                "level": level,
            },
        },
        "loggers": loggers,
        "root": {"handlers": ["stdout"], "level": level},
    }


def configure_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """
    Install the logging configuration once per process.

    Args:
        level: Log level name, e.g. "DEBUG" or "INFO" (default INFO).
        force: Reconfigure even if logging was already set up.
    """
    global _configured_level

    if _configured_level is not None and not force:
        return

    resolved = (level or "INFO").upper()
    dictConfig(build_logging_config(resolved))
    _configured_level = resolved
    logging.getLogger(__name__).debug("Logging configured at %s", resolved)
