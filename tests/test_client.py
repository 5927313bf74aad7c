import httpx
import pytest

from conftest import fund, make_token
from voice_studio import db
from voice_studio.api.main import app
from voice_studio.client import VoiceStudioClient
from voice_studio.errors import PollTimeoutError


def _client() -> VoiceStudioClient:
    return VoiceStudioClient(make_token("u1"), base_url="http://test", transport=httpx.ASGITransport(app=app))


@pytest.mark.asyncio
async def test_wait_for_task_returns_when_done(vendor) -> None:
    fund("u1", 100)
    seen: list[int] = []

    async with _client() as api:
        submitted = await api.submit_speech("hello world", "v-1")
        assert submitted["cost"] == 2

        polls = 0
        original = vendor.get_task

        def get_task(api_key, task_id):
            nonlocal polls
            polls += 1
            if polls == 3:
                vendor.remote = {"status": "done", "metadata": {"audio_url": "https://cdn/a.mp3"}}
            return original(api_key, task_id)

        vendor.get_task = get_task
        task = await api.wait_for_task(submitted["localTaskId"], max_attempts=5, interval=0, on_progress=seen.append)

    assert task["status"] == "done"
    assert task["metadata"]["audio_url"] == "https://cdn/a.mp3"
    assert seen == [10, 10]


@pytest.mark.asyncio
async def test_wait_for_task_times_out_without_touching_task(vendor) -> None:
    fund("u1", 100)
    async with _client() as api:
        submitted = await api.submit_speech("hello world", "v-1")
        with pytest.raises(PollTimeoutError) as exc:
            await api.wait_for_task(submitted["localTaskId"], max_attempts=3, interval=0)

    assert exc.value.attempts == 3
    assert vendor.names().count("get_task") == 3
    assert db.get_task(submitted["localTaskId"])["status"] == "processing"


@pytest.mark.asyncio
async def test_client_reads_credits(vendor) -> None:
    fund("u1", 42)
    async with _client() as api:
        assert await api.get_credits() == 42
