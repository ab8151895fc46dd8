"""
Risk log sink - append-only, timestamped, leveled log shared by all monitors

Line format (consumed by downstream log scrapers):
    <YYYY-MM-DD HH:MM:SS> [<LEVEL>] <message>

Built on a dedicated logging.FileHandler: the handler lock serializes every
emit, and StreamHandler.flush() runs after each line. Open or write failures
are reported on stderr and never raised to the caller.
"""

import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from shared.errors import SinkError

LINE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogLevel(Enum):
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR


def _report_to_stderr(error: SinkError):
    print(f"LogSink: {error}", file=sys.stderr, flush=True)


class _RiskLogHandler(logging.FileHandler):
    """FileHandler that reports write failures on stderr instead of raising"""

    def handleError(self, record: logging.LogRecord):
        exc = sys.exc_info()[1]
        _report_to_stderr(
            SinkError(
                f"unable to write to {self.baseFilename}: {exc} "
                f"(dropped: {record.getMessage()!r})"
            )
        )


class LogSink:
    """
    Append-only risk log

    Safe for concurrent use by many monitors (tasks or threads). Each call to
    append() produces exactly one newline-terminated line, flushed before
    append() returns.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._logger = logging.Logger(f"pegwatch.sink.{self.path}")
        self._logger.propagate = False
        self._handler = self._open_handler()
        self._logger.addHandler(self._handler)

    def _open_handler(self) -> logging.Handler:
        formatter = logging.Formatter(LINE_FORMAT, datefmt=DATE_FORMAT)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handler = _RiskLogHandler(self.path, mode="a", encoding="utf-8")
        except OSError as e:
            _report_to_stderr(
                SinkError(f"unable to open {self.path}: {e}; writing risk log to stderr")
            )
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        return handler

    @property
    def is_file_backed(self) -> bool:
        return isinstance(self._handler, logging.FileHandler)

    def append(
        self,
        level: Union[LogLevel, str],
        message: str,
        timestamp: Optional[datetime] = None,
    ):
        """
        Append one entry. Never raises.

        Args:
            level: LogLevel or one of "INFO", "WARNING", "ERROR"
            message: Entry text; embedded newlines are folded into spaces
            timestamp: Event time (default: now, local time)
        """
        try:
            log_level = level if isinstance(level, LogLevel) else LogLevel[str(level).upper()]
        except KeyError:
            _report_to_stderr(SinkError(f"unknown level {level!r} (dropped: {message!r})"))
            return

        text = " ".join(str(message).splitlines())
        record = self._logger.makeRecord(
            self._logger.name, log_level.value, __file__, 0, text, None, None
        )
        if timestamp is not None:
            record.created = timestamp.timestamp()
            record.msecs = 0
        self._logger.handle(record)

    def info(self, message: str):
        self.append(LogLevel.INFO, message)

    def warning(self, message: str):
        self.append(LogLevel.WARNING, message)

    def error(self, message: str):
        self.append(LogLevel.ERROR, message)

    def close(self):
        self._logger.removeHandler(self._handler)
        self._handler.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
