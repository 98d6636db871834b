"""Structured logger construction, buffering and flushing.

One ``servicekit`` logger is built per process and handed to every
component that logs. Structured fields travel as ``extra=`` on each call and
are rendered as ``key=value`` pairs (text) or JSON keys (json).
"""

import logging
import sys
from logging.handlers import MemoryHandler
from typing import IO, Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from servicekit.config.settings import AppConfig

LOGGER_NAME = "servicekit"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
BUFFER_CAPACITY = 10_000

_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def structured_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the fields attached to a record through ``extra=``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class StructuredTextFormatter(logging.Formatter):
    """Single-line text formatter that appends structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = structured_fields(record)
        if fields:
            rendered = " ".join(f"{key}={value}" for key, value in fields.items())
            line = f"{line} | {rendered}"
        return line


class StructuredJsonFormatter(JsonFormatter):
    """JSON formatter with a stable ``level`` key."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname


def setup_logging(config: AppConfig, stream: Optional[IO[str]] = None) -> logging.Logger:
    """
    Configure and return the process logger.

    Calling this again replaces the previous handlers instead of stacking
    new ones on top of them.

    Args:
        config: Configuration snapshot (level, format, buffering)
        stream: Output stream, stdout by default

    Returns:
        logging.Logger: The shared ``servicekit`` logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level = config.effective_log_level
    logger.setLevel(level)
    logger.propagate = False

    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(level)
    if config.log_format == "json":
        handler.setFormatter(StructuredJsonFormatter(JSON_FORMAT))
    else:
        handler.setFormatter(StructuredTextFormatter(TEXT_FORMAT))

    if config.buffer_logs:
        # Flush level above CRITICAL: nothing is written until release_buffer().
        logger.addHandler(
            MemoryHandler(
                BUFFER_CAPACITY,
                flushLevel=logging.CRITICAL + 1,
                target=handler,
                flushOnClose=True,
            )
        )
    else:
        logger.addHandler(handler)

    # Request lines come from our middleware; aiohttp's access log would duplicate them.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    return logger


def release_buffer(logger: logging.Logger) -> None:
    """Write out buffered records and switch to immediate logging."""
    for handler in list(logger.handlers):
        if isinstance(handler, MemoryHandler):
            handler.flush()
            target = handler.target
            logger.removeHandler(handler)
            handler.setTarget(None)
            handler.close()
            if target is not None:
                logger.addHandler(target)


def flush_logging(logger: logging.Logger) -> None:
    """Flush and close every handler on the logger. Safe to call twice."""
    release_buffer(logger)
    for handler in list(logger.handlers):
        handler.flush()
        logger.removeHandler(handler)
        handler.close()
