"""
Logging setup for the coach API.

Records are plain stdlib log calls. Structured context travels in
`extra={"extra_fields": {...}}` (message_id, user_id, limiter, tool and
similar) and is merged into the top level of each JSON line, so one chat
request can be followed from admission through the recorder write.
Values that are not JSON-native (UUIDs, dates) are stringified.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings


class JSONFormatter(logging.Formatter):
    """One JSON object per record; `extra_fields` never overwrite the base keys."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "environment": settings.ENVIRONMENT,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in (getattr(record, "extra_fields", None) or {}).items():
            log_data.setdefault(key, value)

        return json.dumps(log_data, default=str)


def setup_logging():
    """
    Install a single stdout handler on the root logger.

    JSON lines whenever LOG_FORMAT is "json" or the service runs in
    production; a human-readable line format otherwise.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Model SDK and HTTP client chatter stays out of request logs
    for name in ("sqlalchemy.engine", "httpx", "httpcore", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
