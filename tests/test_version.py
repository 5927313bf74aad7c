from fastapi.testclient import TestClient

from voice_studio.api.main import app
from voice_studio.config import settings


def test_version() -> None:
    c = TestClient(app)
    r = c.get('/version')
    assert r.status_code == 200
    assert r.json()['data']['version'] == settings.app_version
    assert r.json()['meta']['model_version'] == settings.app_version
