from voice_studio.config import settings
from voice_studio.db import cleanup_rate_limits


def main() -> None:
    # keep the current window and the one before it
    removed = cleanup_rate_limits(older_than_sec=settings.rate_limit_window_sec * 2)
    print(f"Stale rate-limit windows removed: {removed}")


if __name__ == "__main__":
    main()
