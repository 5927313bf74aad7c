import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from voice_studio.config import settings


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with known ``extra`` fields lifted to the top level."""

    EXTRA_FIELDS = (
        "user_id", "task_id", "external_task_id", "order_id", "kind",
        "status_code", "error", "amount", "path", "method", "endpoint",
        "admin_user_id", "target_user_id",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging() -> None:
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
