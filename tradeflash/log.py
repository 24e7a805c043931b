"""
Logging setup.

The terminal belongs to the dashboard, so logs normally go to a rotating
file. Without a file they go to stderr.

Usage:
    setup_logging("DEBUG", "logs/tradeflash.log")
    logger = logging.getLogger(__name__)
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys

MAX_LOG_FILE_SIZE = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


class PlainTextFormatter(logging.Formatter):
    """time | LEVEL | logger:func:line | message"""

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, self.datefmt)
        text = (
            f"{record.asctime} | {record.levelname:8} | "
            f"{record.name}:{record.funcName}:{record.lineno} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(level: str = "INFO", log_file: str | None = None) -> logging.Handler:
    """
    Configure the `tradeflash` logger tree. Returns the installed handler.

    Calling it again replaces the previous handler.
    """
    logger = logging.getLogger("tradeflash")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    handler: logging.Handler
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=MAX_LOG_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(PlainTextFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return handler
