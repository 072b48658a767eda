"""Logging configuration for Stackguard commands.

Console output is produced with :func:`click.echo` by the CLI.  The
log file receives one JSON object per line so that external tooling
can parse run history without scraping the human-readable output.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER_NAME = "stackguard"

# Attributes that a LogRecord always carries; anything else came in via ``extra``.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    """Render a log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, sort_keys=True, default=str)


def configure_logging(log_file: Optional[Path], level: str = "INFO") -> logging.Logger:
    """Attach a JSON-lines file handler to the ``stackguard`` logger.

    Calling this more than once replaces the previously installed
    handler, which keeps repeated CLI invocations in one process (as in
    tests) from duplicating log lines.

    Args:
        log_file: Destination file.  ``None`` disables file logging.
        level: Log level name such as ``INFO`` or ``DEBUG``.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(logger.handlers):
        if getattr(handler, "_stackguard", False):
            logger.removeHandler(handler)
            handler.close()
    if log_file is None:
        return logger
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as exc:
        logger.warning("File logging disabled: %s", exc)
        return logger
    handler.setFormatter(JsonLineFormatter())
    handler._stackguard = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


__all__ = ["JsonLineFormatter", "configure_logging", "LOGGER_NAME"]
