"""Controller logging configuration.

Owns the ipfsd-ctl logger configuration (handlers, formatters).
Other modules get their own logger reference via:
    _logger = logging.getLogger(APP_NAME)

Python loggers are singletons by name, so all modules share the same
logger instance. This module owns the configuration; others just call
log_event().

The library installs no handlers by default (NullHandler); applications
and the CLI opt in with configure_logging().
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "ISO8601Formatter",
    "configure_logging",
    "default_log_path",
    "log_event",
]

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from platformdirs import user_log_dir

from ipfsd_ctl.constants import APP_NAME
from ipfsd_ctl.models import ControllerEvent

_logger = logging.getLogger(APP_NAME)
_logger.addHandler(logging.NullHandler())

# Handlers installed by configure_logging(), replaced on reconfiguration
_configured_handlers: list[logging.Handler] = []


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"


class ISO8601Formatter(logging.Formatter):
    """JSONL formatter with a leading ISO 8601 UTC timestamp.

    Format: {"time": "2025-12-04T10:48:37.123Z", ...event fields}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        if isinstance(record.msg, dict):
            log_data = record.msg
        else:
            log_data = {"message": record.getMessage()}

        log_entry = {"time": timestamp, "level": record.levelname, **log_data}
        return json.dumps(log_entry, default=str)


def default_log_path() -> Path:
    """Get the platform-appropriate controller log file.

    Returns:
        Path: <user log dir>/controller.jsonl
    """
    return Path(user_log_dir(APP_NAME)) / "controller.jsonl"


def configure_logging(log_path: Path | None = None, level: str = "INFO") -> None:
    """Configure controller logging.

    Sets up:
    - stderr handler at the requested level, human-readable
    - file handler (only if log_path is given): JSONL, same level

    Safe to call repeatedly; previously installed handlers are closed first.

    Args:
        log_path: Optional JSONL log file.
        level: "DEBUG" or "INFO" (anything else is treated as INFO).
    """
    log_level = logging.DEBUG if level.upper() == "DEBUG" else logging.INFO

    for handler in _configured_handlers:
        _logger.removeHandler(handler)
        handler.close()
    _configured_handlers.clear()

    _logger.setLevel(log_level)

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(log_level)
    stderr_handler.setFormatter(ConsoleFormatter())
    _logger.addHandler(stderr_handler)
    _configured_handlers.append(stderr_handler)

    if log_path is None:
        return

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        log_event(
            logging.WARNING,
            ControllerEvent(
                event="file_logging_failed",
                message="Failed to configure file logging",
                error_type=type(e).__name__,
                error_message=str(e),
                details={"log_path": str(log_path)},
            ),
        )
        return

    file_handler.setLevel(log_level)
    file_handler.setFormatter(ISO8601Formatter())
    _logger.addHandler(file_handler)
    _configured_handlers.append(file_handler)


def log_event(level: int, event: ControllerEvent) -> None:
    """Log a ControllerEvent at the specified level.

    Serializes the event to a dict (excluding None values) and logs it.

    Args:
        level: Logging level (e.g., logging.INFO, logging.WARNING).
        event: The event to log.
    """
    _logger.log(level, event.model_dump(exclude_none=True))
