"""Structured JSON logging for the fan-out service."""

import json
import logging
from datetime import datetime, timezone

from fanout.config import settings


class JsonFormatter(logging.Formatter):
    """Emit each log record as a single-line JSON object.

    Standard fields:
        ts        ISO-8601 UTC timestamp
        level     DEBUG / INFO / WARNING / ERROR / CRITICAL
        logger    logger name
        msg       formatted message
        exc       exception traceback (only when an exception is present)

    Keys passed via ``extra=`` (``webhook_id``, ``endpoint_url``, ``event``...)
    are merged into the top-level object.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        skip = logging.LogRecord.__dict__.keys() | _RESERVED_ATTRS
        for key, value in record.__dict__.items():
            if key not in skip and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


# Instance attributes every LogRecord carries; anything else came from extra=
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "fanout.logging_setup.JsonFormatter",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    },
    "root": {
        "level": settings.log_level.upper(),
        "handlers": ["console"],
    },
    "loggers": {
        "uvicorn.access": {"level": "WARNING"},
        "sqlalchemy.engine": {"level": "WARNING"},
        "httpx": {"level": "WARNING"},
    },
}
