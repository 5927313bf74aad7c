from conftest import auth, fund
from voice_studio.errors import VendorError

USER_KEY = "sk-user-own-key-0002"


def test_shared_voices_pass_filters_and_use_platform_key(client, vendor) -> None:
    fund("u1", 0)
    r = client.get('/v1/voices', params={"search": " calm ", "gender": "female", "page": 2}, headers=auth("u1"))
    assert r.status_code == 200
    data = r.json()['data']
    assert data['voices'][0]['voice_id'] == 'shared-1'
    assert (data['page'], data['page_size'], data['has_more']) == (2, 100, False)

    name, api_key, filters = vendor.calls[-1]
    assert (name, api_key) == ('list_shared_voices', 'platform-key')
    assert filters['search'] == 'calm'
    assert filters['gender'] == 'female'
    assert filters['page'] == 2


def test_shared_voices_use_callers_own_key(client, vendor) -> None:
    fund("u1", 0)
    client.post('/v1/api-key', json={"apiKey": USER_KEY}, headers=auth("u1"))
    client.get('/v1/voices', headers=auth("u1"))
    assert vendor.calls[-1][:2] == ('list_shared_voices', USER_KEY)


def test_catalog_needs_auth(client, vendor) -> None:
    assert client.get('/v1/voices').status_code == 401
    assert client.get('/v1/models').status_code == 401
    assert vendor.calls == []


def test_models(client, vendor) -> None:
    fund("u1", 0)
    r = client.get('/v1/models', headers=auth("u1"))
    assert r.json()['data']['models'] == [{"model_id": "speech-2.6-hd"}]


def test_vendor_health(client, vendor) -> None:
    fund("u1", 0)
    r = client.get('/v1/vendor/health', headers=auth("u1"))
    assert r.json()['status'] == 'ok'
    assert r.json()['data']['minimax'] == 'ok'


def test_vendor_health_degrades_to_unknown(client, vendor) -> None:
    fund("u1", 0)
    vendor.health_error = VendorError("Vendor returned HTTP 503", status_code=503)
    r = client.get('/v1/vendor/health', headers=auth("u1"))
    assert r.status_code == 200
    body = r.json()
    assert body['status'] == 'degraded'
    assert body['data'] == {"elevenlabs": "unknown", "minimax": "unknown"}
    assert body['error']['code'] == 'VENDOR_ERROR'
