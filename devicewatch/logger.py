"""JSON logging to stdout and a per-service log file."""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

_LEVELS = {
    "": logging.INFO,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}
_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


class JsonFormatter(logging.Formatter):
    """Format records as one JSON object per line.

    Structured fields are passed as ``extra={"fields": {...}}``.
    """

    def __init__(self, include_caller: bool = False) -> None:
        super().__init__()
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        moment = datetime.fromtimestamp(record.created).astimezone()
        payload = {
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "timestamp": moment.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + moment.strftime("%z"),
        }
        if self.include_caller:
            payload["caller"] = f"{os.path.basename(record.pathname)}:{record.lineno}"
        payload["message"] = record.getMessage()
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = str(record.exc_info[1])
        return json.dumps(payload, default=str, ensure_ascii=False)


def _stdout_logger(name: str) -> logging.Logger:
    logger = logging.Logger(name, logging.DEBUG)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger


def new_logger(level: str, service_name: str, log_path: str) -> logging.Logger:
    """Create a logger writing JSON to stdout and to <log_path>/<service_name>.log.

    An unknown level or an unusable log directory falls back to a stdout-only
    logger at debug level.
    """
    name = service_name or "service"
    numeric = _LEVELS.get(level.lower())
    if numeric is None:
        return _stdout_logger(name)

    if not os.path.exists(log_path):
        try:
            os.mkdir(log_path, 0o777)
        except OSError:
            return _stdout_logger(name)

    filename = log_path + "/" + service_name + ".log"
    try:
        file_handler = logging.FileHandler(filename, mode="a", encoding="utf-8")
    except OSError:
        return _stdout_logger(name)

    logger = logging.Logger(name, numeric)
    console_handler = logging.StreamHandler(sys.stdout)
    for handler in (file_handler, console_handler):
        handler.setLevel(numeric)
        handler.setFormatter(JsonFormatter(include_caller=True))
        logger.addHandler(handler)
    return logger


_NOP = logging.Logger("nop")
_NOP.addHandler(logging.NullHandler())
_NOP.disabled = True

_CURRENT: contextvars.ContextVar[Optional[logging.Logger]] = contextvars.ContextVar(
    "current_logger", default=None
)


def current_logger() -> logging.Logger:
    """Return the logger bound to the current context, or a disabled one."""
    logger = _CURRENT.get()
    return _NOP if logger is None else logger


def bind_logger(logger: logging.Logger) -> Optional[contextvars.Token]:
    """Bind a logger to the current context; returns a token to undo it, or None if already bound."""
    if _CURRENT.get() is logger:
        return None
    return _CURRENT.set(logger)