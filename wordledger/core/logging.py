import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from wordledger.core.config import settings


# Per-request INFO chatter from the HTTP client and the beat scheduler
NOISY_LOGGERS = ("httpx", "httpcore", "celery.beat")


class JsonFormatter(logging.Formatter):
    """JSON log formatter with support for extra fields."""

    # Fields to extract from log record's extra dict
    EXTRA_FIELDS = (
        "payment_id", "user_id", "path", "status_code", "reference", "checkout_request_id",
        "status", "amount", "words", "available", "requested", "callback_id",
        "match", "plan", "error", "count", "version", "description",
        "breaker_name", "old_state", "new_state",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Extract extra fields from record
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        # Include exception info if present
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Decimal amounts and datetimes fall back to str
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None) -> None:
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.setLevel(level or settings.log_level)
    handlers = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    root.handlers = handlers

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
