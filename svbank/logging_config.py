"""
Structured Logging Configuration Module

JSON-formatted structured logging for balance mutations, ledger appends
and loan decisions. Records carry who acted (user_id), what they did
(action), on which record (resource, "<kind>:<id>") and, for rejected
operations, the error kind.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional


LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Record attributes copied into the JSON entry when set
STRUCTURED_FIELDS = ("user_id", "action", "resource", "error", "extra")


def level_number(level: str) -> int:
    """Map a level name (any case) to its logging constant"""
    try:
        return LOG_LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level}")


def resource_name(kind: str, entity_id: str) -> str:
    """Resource label for log records, e.g. "account:<id>" """
    return f"{kind}:{entity_id}"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "svbank") -> logging.Logger:
    """
    Route the application's loggers to one JSON stream handler.

    Safe to call again (e.g. after a config reload): the previous handler
    is replaced, never stacked.
    """
    levelno = level_number(level)
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(levelno)
    logger.propagate = False

    return logger


def get_logger(name: str = "svbank") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None,
               error: Optional[str] = None):
    """
    Log an action with structured data.

    Args:
        logger: Logger instance
        level: Level name (info, warning, error, ...)
        message: Log message
        user_id: ID of the user performing the action
        action: Operation name, e.g. "transfer" or "process_loan"
        resource: Record acted upon, see resource_name()
        extra: Additional structured data such as amounts
        error: Error kind of a rejected operation
    """
    levelno = level_number(level)
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )
    for field, value in (("user_id", user_id), ("action", action), ("resource", resource),
                         ("extra", extra), ("error", error)):
        if value:
            setattr(record, field, value)

    logger.handle(record)


def log_rejection(logger: logging.Logger, action: str, error: Any,
                  user_id: Optional[str] = None, resource: Optional[str] = None,
                  extra: Optional[dict] = None):
    """Log a rejected operation at WARNING, tagged with the error kind"""
    kind = getattr(error, 'kind', type(error).__name__)
    log_action(logger, "warning", f"{action} failed: {kind}", user_id=user_id,
               action=action, resource=resource, extra=extra, error=kind)
