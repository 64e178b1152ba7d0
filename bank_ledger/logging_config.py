"""
Structured Logging Configuration Module

JSON-formatted structured logging for ledger operations. Every committed
balance mutation logs the account, the operation and the resulting entry
id; every rejected one logs the error code that rejected it.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Ledger context copied from a record into the JSON line when set
CONTEXT_FIELDS = ("correlation_id", "account_id", "action", "resource", "entry_id", "error_code", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Decimals and dates in extra render as strings
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "bank_ledger",
                  log_format: str = "json") -> logging.Logger:
    """
    Setup logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root application logger
        log_format: "json" for structured output, anything else for plain text

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "bank_ledger") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               account_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None, entry_id: Optional[str] = None,
               error_code: Optional[str] = None):
    """
    Log an action with structured ledger context.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        account_id: Account the action applies to
        action: Operation or job name
        resource: Resource being acted upon
        correlation_id: Correlation ID for request tracing
        extra: Additional structured data
        entry_id: Ledger entry written by the action
        error_code: ``LedgerError.code`` of a rejected action
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(logger.name, levelno, __name__, 0, message, (), None)
    context = {
        "account_id": account_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
        "entry_id": entry_id,
        "error_code": error_code,
    }
    for name, value in context.items():
        if value:
            setattr(record, name, value)

    logger.handle(record)


def log_rejection(logger: logging.Logger, action: str, error, account_id: Optional[str] = None,
                  resource: str = "ledger", **details):
    """Log a ``LedgerError`` that stopped an action, at WARNING with its code and details"""
    log_action(logger, "warning", f"{action} rejected: {error.message}",
               account_id=account_id, action=action, resource=resource,
               error_code=error.code, extra={**error.context, **details} or None)
