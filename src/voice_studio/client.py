"""Async HTTP client for the Voice Studio API, with task polling."""
import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from voice_studio.config import settings
from voice_studio.errors import PollTimeoutError

logger = logging.getLogger(__name__)

FINAL_STATUSES = frozenset({"done", "failed", "expired"})


class VoiceStudioClient:
    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.api_base_url).rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "VoiceStudioClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, path: str, **kwargs) -> dict:
        r = await self._client.request(method, path, **kwargs)
        r.raise_for_status()
        return r.json()["data"]

    async def submit_speech(self, text: str, voice_id: str, **options) -> dict:
        return await self._call("POST", "/v1/tasks/speech", json={"text": text, "voiceId": voice_id, **options})

    async def poll(self, task_id: str) -> dict:
        return await self._call("POST", "/v1/tasks/poll", json={"taskId": task_id})

    async def delete_task(self, task_id: str) -> dict:
        return await self._call("POST", "/v1/tasks/delete", json={"taskId": task_id})

    async def get_credits(self) -> int:
        return (await self._call("GET", "/v1/credits"))["credits"]

    async def wait_for_task(
        self,
        task_id: str,
        max_attempts: int | None = None,
        interval: float | None = None,
        on_progress: Callable[[int], Awaitable[None] | None] | None = None,
    ) -> dict:
        """Poll until the task reaches a final state.

        Raises ``PollTimeoutError`` after ``max_attempts`` polls. Giving up does
        not touch the task server-side; it can be polled again later.
        """
        attempts = settings.poll_max_attempts if max_attempts is None else max_attempts
        delay = settings.poll_interval_sec if interval is None else interval
        for attempt in range(attempts):
            task = await self.poll(task_id)
            if task["status"] in FINAL_STATUSES:
                return task
            if on_progress is not None:
                result = on_progress(task.get("progress") or 0)
                if asyncio.iscoroutine(result):
                    await result
            if attempt < attempts - 1:
                await asyncio.sleep(delay)
        logger.info("poll_timeout", extra={"task_id": task_id})
        raise PollTimeoutError(task_id, attempts)
