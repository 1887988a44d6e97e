"""
Structured Logging Configuration Module

JSON log lines for authentication and money-movement events. Records logged
inside ``log_context`` carry the request's correlation id and client address;
``log_action`` and ``log_transaction`` add the account, transaction and risk
fields of the event itself.
"""

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


# Top-level keys of a log line besides timestamp, level, logger and message
STRUCTURED_FIELDS = (
    "correlation_id",
    "client_ip",
    "account_id",
    "transaction_id",
    "action",
    "resource",
    "status",
    "amount",
    "risk_level",
)

_log_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "securebank_log_context", default=None
)


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - set(STRUCTURED_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log fields: {', '.join(sorted(unknown))}")


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get() or {})


@contextmanager
def log_context(**fields):
    """
    Attach structured fields to every record logged inside the block

    Nested blocks add to the enclosing context; ``None`` values are ignored.
    """
    _check_fields(fields)
    merged = current_log_context()
    merged.update({k: _plain(v) for k, v in fields.items() if v is not None})
    token = _log_context.set(merged)
    try:
        yield
    finally:
        _log_context.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON formatter; the active log context fills fields a record lacks"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = current_log_context()
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is None:
                value = context.get(field)
            if value is not None:
                log_entry[field] = _plain(value)

        extra = getattr(record, 'extra', None)
        if extra:
            log_entry['extra'] = extra

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "securebank") -> logging.Logger:
    """
    Setup structured JSON logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "securebank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               extra: Optional[Dict[str, Any]] = None, **fields) -> None:
    """
    Log an event with structured fields.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, critical)
        message: Log message
        extra: Free-form details, emitted under "extra"
        **fields: Any of STRUCTURED_FIELDS; enums are logged by value

    Raises:
        TypeError: For a field that is not in STRUCTURED_FIELDS
    """
    _check_fields(fields)
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(logger.name, levelno, __name__, 0, message, (), None)
    for field, value in fields.items():
        if value is not None:
            setattr(record, field, _plain(value))
    if extra:
        record.extra = extra

    logger.handle(record)


def log_transaction(logger: logging.Logger, message: str, transaction, action: str,
                    account_id: Optional[str] = None,
                    extra: Optional[Dict[str, Any]] = None, **fields) -> None:
    """Log a money movement with its id, status and settlement amount"""
    log_action(
        logger, "info", message,
        account_id=account_id or transaction.from_account_id or transaction.to_account_id,
        transaction_id=transaction.id,
        action=action,
        resource="transaction",
        status=transaction.status,
        amount=str(transaction.settlement_amount),
        extra=extra,
        **fields
    )
