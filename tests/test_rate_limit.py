import pytest

from conftest import auth, fund
from voice_studio import db
from voice_studio.config import settings
from voice_studio.errors import RateLimitError
from voice_studio.ratelimit import check_rate_limit


def test_window_counts_and_resets() -> None:
    assert db.hit_rate_limit("u1", "speech", 60, now=1000.0) == 1
    assert db.hit_rate_limit("u1", "speech", 60, now=1030.0) == 2
    assert db.hit_rate_limit("u1", "clone", 60, now=1030.0) == 1
    assert db.hit_rate_limit("u1", "speech", 60, now=1061.0) == 1


def test_check_rate_limit_raises_past_limit() -> None:
    assert check_rate_limit("u1", "speech", limit=2, window_sec=60) == 1
    assert check_rate_limit("u1", "speech", limit=2, window_sec=60) == 2
    with pytest.raises(RateLimitError):
        check_rate_limit("u1", "speech", limit=2, window_sec=60)


def test_submissions_get_429(client, vendor, monkeypatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_requests", 2)
    fund("u1", 100)
    body = {"text": "hi", "voiceId": "v"}
    assert client.post('/v1/tasks/speech', json=body, headers=auth("u1")).status_code == 200
    assert client.post('/v1/tasks/speech', json=body, headers=auth("u1")).status_code == 200

    r = client.post('/v1/tasks/speech', json=body, headers=auth("u1"))
    assert r.status_code == 429
    assert r.json()['error']['code'] == 'RATE_LIMITED'
    assert vendor.names().count('submit_speech') == 2
    assert db.get_user("u1")["credits"] == 98


def test_limits_are_per_user(client, vendor, monkeypatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_requests", 1)
    fund("u1", 100)
    fund("u2", 100)
    body = {"text": "hi", "voiceId": "v"}
    assert client.post('/v1/tasks/speech', json=body, headers=auth("u1")).status_code == 200
    assert client.post('/v1/tasks/speech', json=body, headers=auth("u2")).status_code == 200
