"""
Logging configuration for vfio-preflight.

Console output stays terse; the optional log file gets everything at
DEBUG, with any LogContext values (e.g. the CPU socket being probed)
rendered on each record.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Iterable, Optional

CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s%(context)s %(message)s"


class ContextFilter(logging.Filter):
    """Renders a record's LogContext data into ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        data = getattr(record, "extra_data", None)
        if data:
            pairs = " ".join(f"{key}={value}" for key, value in data.items())
            record.context = f" [{pairs}]"
        else:
            record.context = ""
        return True


class ExcludeLoggersFilter(logging.Filter):
    """Drops records from the named loggers and their children."""

    def __init__(self, names: Iterable[str]):
        super().__init__()
        self._names = tuple(names)

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(
            record.name == name or record.name.startswith(name + ".")
            for name in self._names
        )


class JSONFormatter(logging.Formatter):
    """One JSON object per record; LogContext data goes under ``data``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data = getattr(record, "extra_data", None)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class ColoredFormatter(logging.Formatter):
    """Colors the level name for terminal output."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Format a copy; other handlers must see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, "")
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _console_handler(level: int, exclude: Iterable[str]) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    formatter_cls = ColoredFormatter if sys.stderr.isatty() else logging.Formatter
    handler.setFormatter(formatter_cls(CONSOLE_FORMAT))
    if exclude:
        handler.addFilter(ExcludeLoggersFilter(exclude))
    return handler


def _file_handler(log_file: Path, json_logs: bool) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JSONFormatter() if json_logs else logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: int = logging.WARNING,
    log_file: Optional[Path] = None,
    json_logs: bool = False,
    console_exclude: Iterable[str] = (),
):
    """
    Configure the root logger.

    Args:
        level: Console logging level (default: WARNING)
        log_file: Path to a rotating DEBUG log file (optional)
        json_logs: Write the log file as JSON lines
        console_exclude: Logger names kept out of the console, e.g. ones
            whose records are already printed another way
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG if log_file else level)
    root_logger.addHandler(_console_handler(level, console_exclude))

    if log_file:
        root_logger.addHandler(_file_handler(log_file, json_logs))

    logging.getLogger("libvirt").setLevel(logging.WARNING)


class LogContext:
    """
    Attaches key/value context to every record created inside the block.

    Nested contexts extend the enclosing one.

    Example:
        with LogContext(socket_id=1):
            logger.debug("Probing IOMMU")  # file log: "... [socket_id=1] Probing IOMMU"
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._old_factory = None

    def __enter__(self):
        old_factory = self._old_factory = logging.getLogRecordFactory()
        context = self.context

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.extra_data = {**getattr(record, "extra_data", {}), **context}
            return record

        logging.setLogRecordFactory(record_factory)
        return self

    def __exit__(self, *args):
        logging.setLogRecordFactory(self._old_factory)
