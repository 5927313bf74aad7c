from datetime import datetime, timedelta, timezone

import pytest

from voice_studio.statuses import TaskStatus, effective_status, normalize_status


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("pending", TaskStatus.pending),
        ("processing", TaskStatus.processing),
        ("doing", TaskStatus.processing),
        ("PROCESSING", TaskStatus.processing),
        ("queued", TaskStatus.pending),
        ("done", TaskStatus.done),
        ("success", TaskStatus.done),
        ("error", TaskStatus.failed),
        ("failed", TaskStatus.failed),
    ],
)
def test_normalize_vendor_status(raw, expected) -> None:
    assert normalize_status(raw) is expected


def test_unknown_status_is_treated_as_running() -> None:
    assert normalize_status("warming_up") is TaskStatus.processing
    assert normalize_status(None) is TaskStatus.processing


def test_done_task_expires_after_retention() -> None:
    now = datetime.now(timezone.utc)
    task = {"status": "done", "expires_at": (now - timedelta(minutes=1)).isoformat()}
    assert effective_status(task, now) is TaskStatus.expired

    task["expires_at"] = (now + timedelta(hours=1)).isoformat()
    assert effective_status(task, now) is TaskStatus.done


def test_failed_task_never_expires() -> None:
    now = datetime.now(timezone.utc)
    task = {"status": "failed", "expires_at": (now - timedelta(days=1)).isoformat()}
    assert effective_status(task, now) is TaskStatus.failed
