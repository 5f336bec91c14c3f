"""
Logging utilities for HyperPay checkout with card data masking.

Usage:
    from hyperpay_checkout.logging import mask_card_number, mask_sensitive_data

    logger = logging.getLogger(__name__)
    logger.info("Charging card %s", mask_card_number(card.number))

Card numbers, CVVs and access tokens must only ever reach a log record
through one of the helpers here.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

PACKAGE_LOGGER = "hyperpay_checkout"
MASK_PATTERN = "***MASKED***"

SENSITIVE_FIELDS = frozenset({
    "access_token",
    "accesstoken",
    "authorization",
    "card_number",
    "cardnumber",
    "cvv",
    "cvc",
    "pan",
    "password",
    "secret",
    "token",
})

_RESERVED_RECORD_KEYS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName",
})


class LogLevel(str, Enum):
    """Log levels accepted by setLogLevel."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def logging_level(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


def mask_card_number(card_number: Optional[str]) -> str:
    """Replace all but the last four characters with '*'.

    Inputs shorter than four characters are returned unchanged.
    """
    if not card_number:
        return card_number or ""
    if len(card_number) < 4:
        return card_number
    return "*" * (len(card_number) - 4) + card_number[-4:]


def is_sensitive_key(key: str) -> bool:
    key_lower = key.lower().replace("-", "_")
    return key_lower in SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "token", "cvv", "credential")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive values in a dict/list structure.

    Card number fields keep their last four digits, every other sensitive
    field is replaced with MASK_PATTERN.
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if key_lower in ("card_number", "cardnumber", "pan") and isinstance(value, str):
                result[key] = mask_card_number(value)
            elif is_sensitive_key(str(key)) or (additional_fields and key in additional_fields):
                result[key] = MASK_PATTERN
            else:
                result[key] = mask_sensitive_data(value, additional_fields, _depth + 1, _max_depth)
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(item, additional_fields, _depth + 1, _max_depth)
            for item in data
        )

    return data


def parse_log_level(level: Any) -> LogLevel:
    """Resolve a wire log level string; raises ValueError when unknown."""
    if isinstance(level, LogLevel):
        return level
    if not isinstance(level, str):
        raise ValueError(f"Unrecognized log level: {level!r}")
    try:
        return LogLevel(level.strip().upper())
    except ValueError:
        raise ValueError(f"Unrecognized log level: {level!r}") from None


def set_log_level(level: Any) -> LogLevel:
    """Set the level of the package logger."""
    resolved = parse_log_level(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(resolved.logging_level)
    return resolved


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_KEYS
        }
        if extra:
            log_data.update(mask_sensitive_data(extra))

        return json.dumps(log_data, default=str)


def setup_logging(
    level: Any = LogLevel.INFO,
    json_format: bool = False,
) -> None:
    """
    Attach a stream handler to the package logger.

    Args:
        level: DEBUG, INFO, WARN or ERROR
        json_format: Emit JSON lines instead of plain text
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    set_log_level(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_hyperpay_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._hyperpay_handler = True  # type: ignore[attr-defined]
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    logger.addHandler(handler)
