"""A small leveled file logger used by the document store."""

from __future__ import annotations

import enum
import os
import threading
import time
from typing import Any

__all__ = [
    "LoggingLevel",
    "DocDBLogger",
    "LEVEL_DEBUG",
    "LEVEL_INFO",
    "LEVEL_WARN",
    "LEVEL_ERROR",
]

LEVEL_DEBUG = "DEBUG"
LEVEL_INFO = "INFO"
LEVEL_WARN = "WARN"
LEVEL_ERROR = "ERROR"

_PREFIX = "badger "
_LOG_FILE_NAME = "docdb.log"


class LoggingLevel(enum.IntEnum):
    """Severity levels, from least to most severe."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3


_LEVELS = {
    LEVEL_DEBUG: LoggingLevel.DEBUG,
    LEVEL_INFO: LoggingLevel.INFO,
    LEVEL_WARN: LoggingLevel.WARN,
    LEVEL_ERROR: LoggingLevel.ERROR,
}


class DocDBLogger:
    """Appends leveled messages to ``docdb.log``.

    The file lives in ``log_path``, or in ``docdb-log`` (created if needed)
    when ``log_path`` is empty.
    """

    def __init__(self, log_path: str, log_level: str) -> None:
        if log_path:
            log_dir = log_path
        else:
            log_dir = os.path.join(log_path, "docdb-log")
            os.makedirs(log_dir, exist_ok=True)
        self.file_name = os.path.join(log_dir, _LOG_FILE_NAME)
        self._file = open(self.file_name, "a", encoding="utf-8")
        level = _LEVELS.get(log_level)
        if level is None:
            self._file.close()
            raise ValueError(f"Unsupported log level: {log_level}")
        self.level = level
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the log file."""
        with self._lock:
            self._file.close()

    def _print(self, level: LoggingLevel, fmt: str, args: tuple[Any, ...]) -> None:
        if self.level > level:
            return
        message = fmt % args if args else fmt
        stamp = time.strftime("%Y/%m/%d %H:%M:%S")
        line = f"{_PREFIX}{stamp} {level.name}: {message}"
        if not line.endswith("\n"):
            line += "\n"
        with self._lock:
            self._file.write(line)
            self._file.flush()

    def error(self, fmt: str, *args: Any) -> None:
        """Log at ERROR level."""
        self._print(LoggingLevel.ERROR, fmt, args)

    def warning(self, fmt: str, *args: Any) -> None:
        """Log at WARN level."""
        self._print(LoggingLevel.WARN, fmt, args)

    def info(self, fmt: str, *args: Any) -> None:
        """Log at INFO level."""
        self._print(LoggingLevel.INFO, fmt, args)

    def debug(self, fmt: str, *args: Any) -> None:
        """Log at DEBUG level."""
        self._print(LoggingLevel.DEBUG, fmt, args)