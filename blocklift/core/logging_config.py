"""
Logging infrastructure for BlockLift.

Every record emitted while an operation runs carries that operation's client
request id, so the attempts of one upload can be pulled out of interleaved
worker output. Transfer fields passed through ``extra`` (blob, block id, chunk
position, attempt) are emitted as structured keys. Credentials that may appear
in connection strings or SAS URLs are redacted before any handler writes.
"""

import json
import logging
import logging.handlers
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Client request id of the operation running in the current task
operation_id: ContextVar[Optional[str]] = ContextVar('operation_id', default=None)

# Transfer attributes lifted from ``extra`` into structured output
TRANSFER_FIELDS = ("blob", "block_id", "position", "attempt", "status_code")

_SIZE_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([KMG]?B)?\s*$', re.IGNORECASE)
_SIZE_UNITS = {None: 1, 'B': 1, 'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}


class SensitiveDataFilter(logging.Filter):
    """Redacts storage credentials from log messages."""

    PATTERNS = [
        (re.compile(r'(Authorization:\s+)(?:SharedKey\s+|Bearer\s+)?\S+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(AccountKey=)[^;]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(SharedAccessSignature=)[^;&]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(sig=)[^;&\s]+', re.IGNORECASE), r'\1***REDACTED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        op_id = operation_id.get()
        if op_id:
            entry["operation_id"] = op_id

        for name in TRANSFER_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain text lines suffixed with the operation id."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        op_id = operation_id.get()
        return f"{line} [op={op_id}]" if op_id else line


def _build_handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())
    return handler


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Configure the root logger for BlockLift.

    Args:
        level: Root level name
        format_type: "json" or "text"
        log_file: Also write to this file, rotated by size
        rotation_size: Rotation threshold such as "10MB"
        rotation_count: Rotated files kept
        module_levels: Level overrides by logger name, e.g.
            {"blocklift.transfer.executor": "DEBUG"} to trace every attempt
    """
    formatter: logging.Formatter = TextFormatter() if format_type == "text" else JSONFormatter()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.getLevelName(level.upper()))
    root.addHandler(_build_handler(logging.StreamHandler(sys.stdout), formatter))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=_parse_size(rotation_size),
            backupCount=rotation_count,
            encoding="utf-8",
        )
        root.addHandler(_build_handler(rotating, formatter))
        root.info(f"Writing logs to {log_file} (rotate at {rotation_size}, keep {rotation_count})")

    for name, module_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(logging.getLevelName(module_level.upper()))

    root.debug(f"Logging configured: level={level} format={format_type}")


def _parse_size(size_str: str) -> int:
    """Convert "512", "64KB", "10MB" or "1.5GB" to a byte count."""
    match = _SIZE_PATTERN.match(size_str)
    if not match:
        raise ValueError(f"Invalid size: {size_str!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[unit.upper() if unit else None])


def set_operation_id(op_id: str) -> None:
    """Tag records logged from the current task with ``op_id``."""
    operation_id.set(op_id)


def clear_operation_id() -> None:
    operation_id.set(None)


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """
    Log ``message`` with structured context.

    Transfer fields (blob, block_id, position, attempt, status_code) become
    top-level keys of the JSON record; anything else goes under "context".
    """
    extra: Dict[str, Any] = {name: context.pop(name) for name in TRANSFER_FIELDS if name in context}
    if context:
        extra["context"] = context
    logger.log(level, message, extra=extra)
