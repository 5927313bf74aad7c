import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from voice_studio.config import settings
from voice_studio.errors import VendorError

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    def as_httpx(self) -> tuple[str, bytes, str]:
        return (self.filename, self.content, self.content_type)


@dataclass
class VendorJob:
    """What the vendor gave back for a submission: a handle to poll, or the result itself."""

    task_id: str | None = None
    audio_url: str | None = None
    srt_url: str | None = None
    json_url: str | None = None
    voice_id: str | None = None
    raw: dict = field(default_factory=dict)

    @property
    def is_immediate(self) -> bool:
        return self.task_id is None


class VendorClient:
    """Thin client for the ai33 / Minimax API. One attempt per call, no retries."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout_sec: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.vendor_base_url).rstrip("/")
        self.timeout_sec = timeout_sec or settings.vendor_timeout_sec
        self.transport = transport

    def _headers(self, api_key: str) -> dict:
        if not api_key:
            raise VendorError("Vendor API key is not configured")
        return {"xi-api-key": api_key}

    def _request(self, method: str, path: str, api_key: str, **kwargs: Any) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self.timeout_sec, transport=self.transport) as client:
                r = client.request(method, url, headers=self._headers(api_key), **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("vendor_timeout", extra={"path": path, "error": str(exc)})
            raise VendorError(f"Vendor request timed out: {path}") from exc
        except httpx.HTTPError as exc:
            logger.warning("vendor_unreachable", extra={"path": path, "error": str(exc)})
            raise VendorError(f"Vendor unreachable: {exc}") from exc

        if r.status_code >= 400:
            logger.warning(
                "vendor_http_error",
                extra={"path": path, "status_code": r.status_code, "error": r.text[:1000]},
            )
            raise VendorError(f"Vendor returned HTTP {r.status_code}", status_code=r.status_code, body=r.text)

        try:
            data = r.json()
        except ValueError as exc:
            raise VendorError("Vendor returned a non-JSON body", status_code=r.status_code, body=r.text[:500]) from exc
        if isinstance(data, dict) and data.get("success") is False:
            message = str(data.get("error") or data.get("message") or "Vendor rejected the request")
            raise VendorError(message, body=str(data))
        return data

    @staticmethod
    def _job(data: dict) -> VendorJob:
        meta = data.get("metadata") or {}
        job = VendorJob(
            task_id=data.get("task_id"),
            audio_url=data.get("audio_url") or meta.get("audio_url"),
            srt_url=meta.get("srt_url"),
            json_url=meta.get("json_url"),
            raw=data,
        )
        if job.task_id is None and not (job.audio_url or job.srt_url or job.json_url):
            raise VendorError("Vendor response carried neither a task id nor a result", body=str(data)[:500])
        return job

    # submissions

    def submit_speech(
        self,
        api_key: str,
        text: str,
        voice_id: str,
        model: str,
        vol: float = 1.0,
        pitch: int = 0,
        speed: float = 1.0,
        language_boost: str = "Auto",
        with_transcript: bool = False,
    ) -> VendorJob:
        body = {
            "text": text,
            "model": model,
            "voice_setting": {"voice_id": voice_id, "vol": vol, "pitch": pitch, "speed": speed},
            "language_boost": language_boost,
            "with_transcript": with_transcript,
        }
        return self._job(self._request("POST", "v1m/task/text-to-speech", api_key, json=body))

    def clone_voice(
        self,
        api_key: str,
        file: UploadedFile,
        voice_name: str | None = None,
        preview_text: str | None = None,
        language_tag: str | None = None,
        gender_tag: str | None = None,
        need_noise_reduction: bool = False,
    ) -> VendorJob:
        form = {"need_noise_reduction": str(need_noise_reduction).lower()}
        for key, value in (
            ("voice_name", voice_name),
            ("preview_text", preview_text),
            ("language_tag", language_tag),
            ("gender_tag", gender_tag),
        ):
            if value:
                form[key] = value
        data = self._request("POST", "v1m/voice/clone", api_key, data=form, files={"file": file.as_httpx()})
        body = data.get("data") if isinstance(data.get("data"), dict) else data
        voice_id = body.get("voice_id") or body.get("id")
        if not voice_id:
            raise VendorError("Vendor did not return a cloned voice id", body=str(data)[:500])
        return VendorJob(
            voice_id=str(voice_id),
            audio_url=body.get("demo_audio") or body.get("preview_url"),
            raw=data,
        )

    def submit_transcription(self, api_key: str, file: UploadedFile) -> VendorJob:
        data = self._request("POST", "v1/task/speech-to-text", api_key, files={"file": file.as_httpx()})
        return self._job(data)

    def submit_dubbing(
        self,
        api_key: str,
        file: UploadedFile,
        target_lang: str,
        source_lang: str = "auto",
        num_speakers: int = 0,
        disable_voice_cloning: bool = True,
    ) -> VendorJob:
        form = {
            "num_speakers": str(num_speakers),
            "disable_voice_cloning": str(disable_voice_cloning).lower(),
            "source_lang": source_lang,
            "target_lang": target_lang,
        }
        data = self._request("POST", "v1/task/dubbing", api_key, data=form, files={"file": file.as_httpx()})
        return self._job(data)

    def submit_music(self, api_key: str, payload: dict) -> VendorJob:
        return self._job(self._request("POST", "v1m/task/music-generation", api_key, json=payload))

    # task lifecycle

    def get_task(self, api_key: str, task_id: str) -> dict:
        return self._request("GET", f"v1/task/{task_id}", api_key)

    def delete_tasks(self, api_key: str, task_ids: list[str]) -> dict:
        return self._request("POST", "v1/task/delete", api_key, json={"task_ids": task_ids})

    # voice clones

    def list_voice_clones(self, api_key: str) -> list[dict]:
        data = self._request("GET", "v1m/voice/clone", api_key)
        items = data.get("data", data.get("voices", []))
        return items if isinstance(items, list) else []

    def delete_voice_clone(self, api_key: str, voice_id: str) -> dict:
        return self._request("DELETE", f"v1m/voice/clone/{voice_id}", api_key)

    # catalog

    def list_shared_voices(
        self,
        api_key: str,
        page_size: int = 100,
        page: int = 0,
        search: str = "",
        gender: str = "",
        language: str = "",
        age: str = "",
        accent: str = "",
    ) -> dict:
        params: dict[str, Any] = {"page_size": page_size}
        if page > 0:
            params["page"] = page
        for key, value in (
            ("search", search),
            ("gender", gender),
            ("language", language),
            ("age", age),
            ("accent", accent),
        ):
            if value:
                params[key] = value
        data = self._request("GET", "v1/shared-voices", api_key, params=params)
        return {"voices": data.get("voices") or [], "has_more": bool(data.get("has_more"))}

    def list_models(self, api_key: str) -> list:
        data = self._request("GET", "v1/models", api_key)
        if isinstance(data, list):
            return data
        items = data.get("models", data.get("data", []))
        return items if isinstance(items, list) else []

    def health_check(self, api_key: str) -> dict:
        return self._request("GET", "v1/health-check", api_key)

    # account

    def get_credits(self, api_key: str) -> int | None:
        data = self._request("GET", "v1/credits", api_key)
        credits = data.get("credits")
        if isinstance(credits, dict):
            credits = credits.get("remaining")
        if credits is None:
            credits = data.get("remaining_credits")
        return int(credits) if credits is not None else None

    def get_subscription(self, api_key: str) -> dict:
        data = self._request("GET", "v1/user/subscription", api_key)
        return {
            "character_count": int(data.get("character_count") or 0),
            "character_limit": int(data.get("character_limit") or 0),
            "tier": data.get("tier") or "free",
        }
