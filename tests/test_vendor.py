import json

import httpx
import pytest

from voice_studio.errors import VendorError
from voice_studio.vendor import VendorClient


def _client(handler) -> VendorClient:
    return VendorClient(base_url="https://vendor.test", transport=httpx.MockTransport(handler))


def test_speech_submission_returns_handle() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers["xi-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "task_id": "t-9"})

    job = _client(handler).submit_speech("k-1", text="hi", voice_id="v-1", model="speech-2.6-hd")
    assert job.task_id == "t-9"
    assert not job.is_immediate
    assert seen["path"] == "/v1m/task/text-to-speech"
    assert seen["key"] == "k-1"
    assert seen["body"]["voice_setting"]["voice_id"] == "v-1"


def test_immediate_result_without_handle() -> None:
    def handler(request):
        return httpx.Response(200, json={"success": True, "audio_url": "https://cdn/a.mp3"})

    job = _client(handler).submit_music("k", {"idea": "x"})
    assert job.is_immediate
    assert job.audio_url == "https://cdn/a.mp3"


def test_http_error_keeps_vendor_status_and_body() -> None:
    def handler(request):
        return httpx.Response(422, text='{"detail":"voice not found"}')

    with pytest.raises(VendorError) as exc:
        _client(handler).get_task("k", "t-1")
    assert exc.value.status_code == 422
    assert "voice not found" in exc.value.body


def test_vendor_auth_failure_maps_to_bad_gateway() -> None:
    def handler(request):
        return httpx.Response(401, json={"detail": "bad key"})

    with pytest.raises(VendorError) as exc:
        _client(handler).get_credits("k")
    assert exc.value.status_code == 502
    assert exc.value.vendor_status == 401


def test_success_false_is_an_error() -> None:
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "quota exceeded"})

    with pytest.raises(VendorError, match="quota exceeded"):
        _client(handler).submit_music("k", {"idea": "x"})


def test_transport_failure() -> None:
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(VendorError) as exc:
        _client(handler).get_task("k", "t-1")
    assert exc.value.status_code == 502


def test_missing_key_never_calls_out() -> None:
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(VendorError):
        _client(handler).get_task("", "t-1")
    assert calls == []


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"credits": {"remaining": 900}}, 900),
        ({"remaining_credits": 12}, 12),
        ({"credits": 7}, 7),
        ({}, None),
    ],
)
def test_credit_shapes(payload, expected) -> None:
    assert _client(lambda r: httpx.Response(200, json=payload)).get_credits("k") == expected


def test_subscription_defaults() -> None:
    def handler(request):
        assert request.url.path == "/v1/user/subscription"
        return httpx.Response(200, json={"character_count": 5})

    assert _client(handler).get_subscription("k") == {"character_count": 5, "character_limit": 0, "tier": "free"}


def test_shared_voices_query_skips_empty_filters() -> None:
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"voices": [{"voice_id": "a"}], "has_more": True})

    result = _client(handler).list_shared_voices("k", page_size=20, language="en")
    assert seen["path"] == "/v1/shared-voices"
    assert seen["params"] == {"page_size": "20", "language": "en"}
    assert result == {"voices": [{"voice_id": "a"}], "has_more": True}


def test_models_accepts_list_or_wrapped_body() -> None:
    assert _client(lambda r: httpx.Response(200, json=[{"id": "m"}])).list_models("k") == [{"id": "m"}]
    assert _client(lambda r: httpx.Response(200, json={"models": [{"id": "n"}]})).list_models("k") == [{"id": "n"}]
