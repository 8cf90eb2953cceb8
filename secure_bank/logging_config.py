"""
Structured Logging Configuration Module

Ledger, service and security events are logged with optional structured
fields (``user_id``, ``action``, ``resource``, ``extra``) attached to the
record. ``JSONFormatter`` renders them as one JSON object per line.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Record attributes set by log_action and picked up by JSONFormatter
STRUCTURED_FIELDS = ("user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Render a record and its structured fields as a JSON line"""

    def format(self, record):
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
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


def _make_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler()
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(level: str = "INFO", logger_name: str = "secure_bank",
                  log_format: str = "json") -> logging.Logger:
    """
    Attach a single stream handler to ``logger_name``.

    Calling it again replaces the handler, so reconfiguring never
    duplicates output. The logger stops propagating to the root logger.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger to configure
        log_format: "json" or "text"
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    logger.addHandler(_make_handler(log_format))
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger


def get_logger(name: str = "secure_bank") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None) -> None:
    """
    Log ``message`` at ``level`` ("info", "warning", ...) with the given
    structured fields. Fields left as None are not attached.
    """
    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "extra": extra,
    }
    logger.log(
        getattr(logging, level.upper()), message,
        extra={k: v for k, v in fields.items() if v},
        stacklevel=2
    )
