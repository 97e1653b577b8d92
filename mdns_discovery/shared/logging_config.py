"""
Logging Configuration

Root logger setup shared by the engine and the ``mdns-discovery`` tool.
Interactive terminals get rich's console handler; everything else gets plain
or JSON lines, optionally mirrored to a rotating file.
"""

import json
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from .constants import LOG_DATE_FORMAT, LOG_FORMAT


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_MAX_LOG_SIZE = 10 * 1024 * 1024
PACKAGE_LOGGER = "mdns_discovery"

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    ``extra`` fields such as ``peer_id`` or ``wire_format`` are copied to the
    top level so log shippers can filter on them.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or LOG_DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


@dataclass
class LoggingOptions:
    """Keyword arguments for :func:`setup_logging`."""
    level: str = "INFO"
    log_file: Optional[str] = None
    enable_colors: bool = True
    json_format: bool = False
    max_file_size: int = DEFAULT_MAX_LOG_SIZE
    backup_count: int = 5

    @classmethod
    def from_env(cls) -> "LoggingOptions":
        """
        Read ``MDNS_LOG_*`` variables.

        ``MDNS_LOG_LEVEL``, ``MDNS_LOG_FILE``, ``MDNS_LOG_COLORS``,
        ``MDNS_LOG_JSON``, ``MDNS_LOG_MAX_SIZE`` and ``MDNS_LOG_BACKUP_COUNT``.

        Raises:
            ValueError: If a size or count is not an integer.
        """
        def flag(name: str, default: bool) -> bool:
            return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")

        return cls(
            level=os.getenv("MDNS_LOG_LEVEL", cls.level),
            log_file=os.getenv("MDNS_LOG_FILE") or None,
            enable_colors=flag("MDNS_LOG_COLORS", True),
            json_format=flag("MDNS_LOG_JSON", False),
            max_file_size=int(os.getenv("MDNS_LOG_MAX_SIZE", str(DEFAULT_MAX_LOG_SIZE))),
            backup_count=int(os.getenv("MDNS_LOG_BACKUP_COUNT", "5")),
        )


def _console_handler(enable_colors: bool, json_format: bool) -> logging.Handler:
    # stderr keeps the peer listing on stdout clean
    if json_format:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    elif enable_colors and sys.stderr.isatty():
        handler = RichHandler(console=Console(stderr=True), show_path=False, log_time_format=LOG_DATE_FORMAT)
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    return handler


def _file_handler(log_file: str, json_format: bool, max_file_size: int, backup_count: int) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=max_file_size, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    enable_colors: bool = True,
    json_format: bool = False,
    max_file_size: int = DEFAULT_MAX_LOG_SIZE,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger, replacing any handlers installed earlier.

    Args:
        level: Level name; unknown names fall back to INFO.
        log_file: Also write to this file, rotated at ``max_file_size``.
        enable_colors: Use rich output when stderr is a terminal.
        json_format: Emit JSON lines on every handler.
        max_file_size: Rotation threshold in bytes.
        backup_count: Rotated files to keep.

    Returns:
        The root logger.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handlers = [_console_handler(enable_colors, json_format)]
    if log_file:
        handlers.append(_file_handler(log_file, json_format, max_file_size, backup_count))

    for handler in handlers:
        handler.setLevel(numeric_level)
        root.addHandler(handler)

    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``name``'s logger, or the package logger when no name is given."""
    return logging.getLogger(name or PACKAGE_LOGGER)
