import logging

from voice_studio import db
from voice_studio.config import settings
from voice_studio.errors import RateLimitError

logger = logging.getLogger(__name__)


def check_rate_limit(user_id: str, endpoint: str, limit: int | None = None, window_sec: int | None = None) -> int:
    """Count this request against ``user_id`` + ``endpoint`` and reject it once the window is full."""
    limit = settings.rate_limit_requests if limit is None else limit
    window_sec = settings.rate_limit_window_sec if window_sec is None else window_sec
    count = db.hit_rate_limit(user_id, endpoint, window_sec)
    if count > limit:
        logger.warning("rate_limited", extra={"user_id": user_id, "endpoint": endpoint, "amount": count})
        raise RateLimitError(
            f"Too many requests. Limit is {limit} per {window_sec} seconds.",
            details={"endpoint": endpoint, "limit": limit, "window_sec": window_sec},
        )
    return count
