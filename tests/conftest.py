import time

import jwt
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from voice_studio import config, db, ledger
from voice_studio.api.deps import get_vendor
from voice_studio.api.main import app
from voice_studio.vendor import VendorJob

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


class FakeVendor:
    """Stands in for the ai33 API. Records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict]] = []
        self.submit_error: Exception | None = None
        self.immediate: VendorJob | None = None
        self.remote: dict = {"status": "doing", "progress": 10}
        self.poll_error: Exception | None = None
        self.delete_result: dict = {"success": True}
        self.credits: int | None = 5000
        self.credits_error: Exception | None = None
        self.health_error: Exception | None = None
        self._seq = 0

    def _submit(self, name: str, api_key: str, **kwargs) -> VendorJob:
        self.calls.append((name, api_key, kwargs))
        if self.submit_error is not None:
            raise self.submit_error
        if self.immediate is not None:
            return self.immediate
        self._seq += 1
        return VendorJob(task_id=f"ext-{self._seq}")

    def submit_speech(self, api_key, **kwargs):
        return self._submit("submit_speech", api_key, **kwargs)

    def clone_voice(self, api_key, **kwargs):
        return self._submit("clone_voice", api_key, **kwargs)

    def submit_transcription(self, api_key, **kwargs):
        return self._submit("submit_transcription", api_key, **kwargs)

    def submit_dubbing(self, api_key, **kwargs):
        return self._submit("submit_dubbing", api_key, **kwargs)

    def submit_music(self, api_key, payload):
        return self._submit("submit_music", api_key, payload=payload)

    def get_task(self, api_key, task_id):
        self.calls.append(("get_task", api_key, {"task_id": task_id}))
        if self.poll_error is not None:
            raise self.poll_error
        return dict(self.remote)

    def delete_tasks(self, api_key, task_ids):
        self.calls.append(("delete_tasks", api_key, {"task_ids": task_ids}))
        return dict(self.delete_result)

    def get_credits(self, api_key):
        self.calls.append(("get_credits", api_key, {}))
        if self.credits_error is not None:
            raise self.credits_error
        return self.credits

    def list_voice_clones(self, api_key):
        self.calls.append(("list_voice_clones", api_key, {}))
        return [{"voice_id": "clone-1", "voice_name": "Mine"}]

    def delete_voice_clone(self, api_key, voice_id):
        self.calls.append(("delete_voice_clone", api_key, {"voice_id": voice_id}))
        return {"success": True}

    def get_subscription(self, api_key):
        self.calls.append(("get_subscription", api_key, {}))
        return {"character_count": 120, "character_limit": 10000, "tier": "pro"}

    def list_shared_voices(self, api_key, **filters):
        self.calls.append(("list_shared_voices", api_key, filters))
        return {"voices": [{"voice_id": "shared-1", "name": "Narrator"}], "has_more": False}

    def list_models(self, api_key):
        self.calls.append(("list_models", api_key, {}))
        return [{"model_id": "speech-2.6-hd"}]

    def health_check(self, api_key):
        self.calls.append(("health_check", api_key, {}))
        if self.health_error is not None:
            raise self.health_error
        return {"elevenlabs": "ok", "minimax": "ok"}

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


def make_token(sub: str, expires_in: int = 3600, secret: str = JWT_SECRET, **claims) -> str:
    payload = {"sub": sub, "aud": "authenticated", "exp": int(time.time()) + expires_in, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth(sub: str, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **claims)}"}


def fund(user_id: str, credits: int) -> None:
    db.ensure_user(user_id)
    if credits:
        ledger.credit(user_id, credits, actor_id="test-seed")


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    db_path = tmp_path / "voice_studio.db"

    monkeypatch.setattr(config.settings, "database_path", str(db_path))
    monkeypatch.setattr(config.settings, "jwt_secret", JWT_SECRET)
    monkeypatch.setattr(config.settings, "jwt_audience", "authenticated")
    monkeypatch.setattr(config.settings, "encryption_key", Fernet.generate_key().decode())
    monkeypatch.setattr(config.settings, "vendor_api_key", "platform-key")
    monkeypatch.setattr(config.settings, "signup_free_credits", 0)
    monkeypatch.setattr(config.settings, "rate_limit_requests", 1000)

    db.init_db()
    yield


@pytest.fixture
def vendor():
    fake = FakeVendor()
    app.dependency_overrides[get_vendor] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_vendor, None)


@pytest.fixture
def client(vendor):
    return TestClient(app)


@pytest.fixture
def admin_headers():
    db.ensure_user("admin-1")
    db.grant_role("admin-1", "admin")
    return auth("admin-1")

