"""Structured logging utilities for Ekiden."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, MutableMapping, Optional, Tuple

__all__ = [
    "ContextAdapter",
    "ContextFormatter",
    "JSONFormatter",
    "bind_logger",
    "setup_structured_logging",
]

_NOISY_THIRD_PARTY_LOGGERS = ("aiohttp", "aiohttp.access", "asyncio")

_LOG_RECORD_IGNORED_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "getMessage",
}


class JSONFormatter(logging.Formatter):
    """Format log records as JSON Lines."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry = {
            "timestamp": _to_iso_millis(datetime.now(timezone.utc)),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _LOG_RECORD_IGNORED_FIELDS or key.startswith("_"):
                continue
            entry[key] = _json_safe(value)

        return json.dumps(entry)


class ContextFormatter(logging.Formatter):
    """Console formatter that appends slot/instance context when present."""

    _CONTEXT_KEYS: Tuple[str, ...] = ("slot", "instance")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = [
            f"{key}={getattr(record, key)}"
            for key in self._CONTEXT_KEYS
            if getattr(record, key, None) is not None
        ]
        return f"{text} [{' '.join(context)}]" if context else text


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges call-site ``extra`` with bound context."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextAdapter":
        return ContextAdapter(self.logger, {**(self.extra or {}), **context})


def bind_logger(
    logger: logging.Logger | logging.LoggerAdapter, **context: Any
) -> ContextAdapter:
    """Return an adapter adding ``context`` fields to every record."""
    if isinstance(logger, ContextAdapter):
        return logger.bind(**context)
    if isinstance(logger, logging.LoggerAdapter):
        base = {**(logger.extra or {}), **context}
        return ContextAdapter(logger.logger, base)
    return ContextAdapter(logger, dict(context))


def setup_structured_logging(
    log_file: Optional[Path],
    *,
    level: str = "INFO",
    verbose: bool = False,
    quiet: bool = False,
    max_bytes: int = 10_485_760,
    backup_count: int = 5,
) -> None:
    """Configure JSONL file logging plus a human console handler."""
    handlers: List[logging.Handler] = []
    if log_file is not None:
        handlers.append(_build_file_handler(log_file, max_bytes, backup_count))
    console_level = _determine_console_level(level, verbose, quiet)
    handlers.append(_build_console_handler(console_level))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
        existing.close()
    root_logger.setLevel(logging.DEBUG)
    for handler in handlers:
        root_logger.addHandler(handler)

    _limit_third_party_noise()


def _determine_console_level(level: str, verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_file_handler(
    log_file: Path, max_bytes: int, backup_count: int
) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file, mode="a", maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(JSONFormatter())
    return handler


def _build_console_handler(console_level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(console_level)
    handler.setFormatter(
        ContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    return handler


def _limit_third_party_noise() -> None:
    for name in _NOISY_THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _to_iso_millis(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _json_safe(value: object) -> object:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value
