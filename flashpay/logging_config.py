"""
Logging setup for FlashPay

Log lines are emitted as one JSON object each, carrying structured fields
(account, action, resource) attached through ``log_action``.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


STRUCTURED_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON line"""

    def format(self, record):
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "flashpay",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: Level name such as "INFO" or "DEBUG"
        logger_name: Logger to configure; children under it inherit the handler
        log_format: "json" or "text"
        log_file: Write to this file instead of stderr

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(logging.Formatter(TEXT_FORMAT) if log_format == "text" else JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(logging.getLevelName(level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "flashpay") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log a business event with structured fields.

    Args:
        logger: Target logger
        level: Level name, e.g. "info" or "warning"
        message: Human-readable message
        user_id: Account the event concerns
        action: Short verb such as "transfer" or "revoke"
        resource: Affected record, e.g. "transfer:<id>"
        correlation_id: Request correlation ID
        extra: Any further key/value details
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        logging.getLevelName(level.upper()),
        message,
        extra={key: value for key, value in fields.items() if value}
    )
