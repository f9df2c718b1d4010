"""
Structured Logging Configuration Module

Every ledger component logs through a child of the "globalpay" logger.
Records are rendered as one JSON object per line carrying the account,
action and resource they concern, and the id of the request that caused
them when one is active.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional
import contextvars
import json
import logging


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

STRUCTURED_FIELDS = ("account_id", "action", "resource", "extra")

# Request id for the request being served in this context
_correlation_id = contextvars.ContextVar('correlation_id', default=None)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str):
    """Tag every record logged inside the block with correlation_id"""
    token = _correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; absent fields are omitted"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
            "correlation_id": getattr(record, 'correlation_id', None) or get_correlation_id()
        }
        for name in STRUCTURED_FIELDS:
            log_entry[name] = getattr(record, name, None)

        log_entry = {k: v for k, v in log_entry.items() if v is not None}
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json", log_file: Optional[str] = None,
                  logger_name: str = "globalpay") -> logging.Logger:
    """
    Configure the ledger's root logger

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: "json" for structured records, "text" for plain lines
        log_file: Append to this file instead of stderr
        logger_name: Logger to configure

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces the previous handler
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(logging.Formatter(TEXT_FORMAT) if fmt.lower() == "text" else JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "globalpay") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               account_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log a ledger event with structured fields.

    The record is attributed to the function that called log_action, so
    module and function name point at the component that did the work.

    Args:
        logger: Component logger
        level: Level name (info, warning, error, ...)
        message: Human-readable summary
        account_id: Account the event concerns
        action: Operation name (deposit, send, ...)
        resource: Transaction id or transfer reference
        correlation_id: Overrides the request id of the current context
        extra: Additional structured data
    """
    fields = {
        "account_id": account_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra
    }
    logger.log(
        getattr(logging, level.upper()), message,
        extra={name: value for name, value in fields.items() if value},
        stacklevel=2
    )
