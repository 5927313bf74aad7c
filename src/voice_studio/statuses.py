import logging
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    done = "done"
    failed = "failed"
    # derived at read time, never stored
    expired = "expired"


TERMINAL = frozenset({TaskStatus.done, TaskStatus.failed})

_VENDOR_STATUS = {
    "pending": TaskStatus.pending,
    "queued": TaskStatus.pending,
    "doing": TaskStatus.processing,
    "processing": TaskStatus.processing,
    "running": TaskStatus.processing,
    "done": TaskStatus.done,
    "success": TaskStatus.done,
    "completed": TaskStatus.done,
    "error": TaskStatus.failed,
    "failed": TaskStatus.failed,
}


def normalize_status(vendor_status: str | None) -> TaskStatus:
    """Map the vendor's status word onto one of the four stored states."""
    key = (vendor_status or "").strip().lower()
    status = _VENDOR_STATUS.get(key)
    if status is None:
        logger.warning("unknown_vendor_status", extra={"error": key or "<empty>"})
        return TaskStatus.processing
    return status


def is_expired(expires_at: str | None, now: datetime | None = None) -> bool:
    if not expires_at:
        return False
    now = now or datetime.now(timezone.utc)
    return datetime.fromisoformat(expires_at) <= now


def effective_status(task: dict, now: datetime | None = None) -> TaskStatus:
    status = TaskStatus(task["status"])
    if status is TaskStatus.done and is_expired(task.get("expires_at"), now):
        return TaskStatus.expired
    return status
