"""
Structured JSON logging for Access Guard.

Each log line is a single JSON object so the output can be shipped to a
SIEM as is. Lines go to LOG_STREAM and, once setup_file_logging() has run,
to a size-rotated program log whose old generations are gzipped:

    accessguard.log  accessguard.log.1.gz  accessguard.log.2.gz ...

Locked addresses are additionally written to an alerts file (JSON Lines)
by append_alert().
"""

import gzip
import json
import logging
import os
import shutil
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import config

# stdout by default; tests may swap this for a StringIO.
LOG_STREAM = sys.stdout

_FILE_LOGGER = logging.getLogger("accessguard")
_FILE_LOGGER.setLevel(logging.DEBUG)
_FILE_LOGGER.propagate = False

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

_file_handler: Optional[RotatingFileHandler] = None


def _gzip_name(name: str) -> str:
    return name + ".gz"


def _gzip_rotate(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


def setup_file_logging(path: Path, max_bytes: int = None, backups: int = None) -> None:
    """
    Also write every log line to `path`, rotated at max_bytes.

    Calling it again replaces the previous file handler.
    """
    global _file_handler
    close_file_logging()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=max_bytes if max_bytes is not None else config.LOG_MAX_BYTES,
        backupCount=backups if backups is not None else config.LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.namer = _gzip_name
    handler.rotator = _gzip_rotate
    _FILE_LOGGER.addHandler(handler)
    _file_handler = handler


def close_file_logging() -> None:
    global _file_handler
    if _file_handler is None:
        return
    _FILE_LOGGER.removeHandler(_file_handler)
    _file_handler.close()
    _file_handler = None


def _timestamp_iso() -> str:
    """Current UTC time in ISO format for log entries."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def log_event(level: str, message: str, **kwargs) -> None:
    """
    Write a single log event as one line of JSON.

    Args:
        level: DEBUG, INFO, WARN, ERROR.
        message: Human-readable description.
        **kwargs: Additional key-value pairs (e.g. ip, rule, until).
    """
    event = {
        "timestamp": _timestamp_iso(),
        "level": level,
        "message": message,
        **kwargs,
    }
    line = json.dumps(event, default=str)
    LOG_STREAM.write(line + "\n")
    LOG_STREAM.flush()
    if _file_handler is not None:
        _FILE_LOGGER.log(_LEVELS.get(level, logging.INFO), line)


def log_debug(message: str, **kwargs) -> None:
    """Log at DEBUG level, only when config.VERBOSE is set."""
    if config.VERBOSE:
        log_event("DEBUG", message, **kwargs)


def log_info(message: str, **kwargs) -> None:
    log_event("INFO", message, **kwargs)


def log_warn(message: str, **kwargs) -> None:
    log_event("WARN", message, **kwargs)


def log_error(message: str, **kwargs) -> None:
    log_event("ERROR", message, **kwargs)


def append_alert(alert: dict, alerts_file: Path) -> None:
    """
    Append one alert to the alerts file.

    The file holds one JSON object per line and is only ever appended to,
    so alerts from earlier runs are kept.
    """
    alerts_file.parent.mkdir(parents=True, exist_ok=True)
    with open(alerts_file, "a", encoding="utf-8") as f:
        f.write(json.dumps(alert, default=str) + "\n")
