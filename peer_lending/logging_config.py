"""
Structured Logging Configuration Module

JSON log lines for every lending operation. Actions carry who did what to
which record so a log search can follow a single loan or user.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Record attributes copied into each JSON line when set
CONTEXT_FIELDS = ("correlation_id", "user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
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

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "peer_lending",
                  log_format: str = "json") -> logging.Logger:
    """
    Configure the application logger.

    Args:
        level: Log level name
        logger_name: Application logger to configure
        log_format: "json" for JSONFormatter output, anything else for plain text

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Calling twice must not double every line
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "peer_lending") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Log an action with structured context.

    ``resource`` names the record acted on, e.g. ``loan:<id>``. Context
    values left as None are not attached.
    """
    context = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra,
    }
    logger.log(
        getattr(logging, level.upper()),
        message,
        extra={key: value for key, value in context.items() if value}
    )
