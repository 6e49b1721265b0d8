"""Structured logging configuration for CiteCheck."""

import logging
import sys
from typing import Any, Optional

from pydantic import ValidationError

ROOT_LOGGER_NAME = "citecheck"


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        parts = [f"{k}={v}" for k, v in log_data.items()]
        return " ".join(parts)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Attach a structured stdout handler to the package logger.

    Safe to call more than once; the handler is only installed the first
    time. Modules log through ``logging.getLogger(__name__)`` and inherit
    this configuration.

    Args:
        level: Log level name. Defaults to the CITECHECK_LOG_LEVEL setting.

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)

    if level is None:
        try:
            from citecheck.core.config import get_settings

            level = get_settings().LOG_LEVEL
        except ValidationError:
            # Default to INFO if settings are invalid
            level = "INFO"

    logger.setLevel(level.upper())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Context fields rendered as key=value pairs
    """
    logger.log(level, msg, extra={"extra_data": kwargs})
