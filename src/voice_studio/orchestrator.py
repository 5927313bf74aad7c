import logging
from dataclasses import dataclass, field
from uuid import uuid4

from voice_studio import billing, db, ledger
from voice_studio.config import settings
from voice_studio.errors import ConflictError, InsufficientFundsError, NotFoundError, ValidationError, VendorError
from voice_studio.schemas import SubmitResponse, TaskMetadata, TaskView
from voice_studio.statuses import TERMINAL, TaskStatus, effective_status, normalize_status
from voice_studio.vendor import UploadedFile, VendorClient, VendorJob

logger = logging.getLogger(__name__)

JOB_KINDS = ("speech", "clone", "transcription", "dubbing", "music")


@dataclass
class JobSpec:
    kind: str
    cost: int
    input_text: str | None = None
    file: UploadedFile | None = None
    voice_id: str | None = None
    voice_name: str | None = None
    model: str | None = None
    params: dict = field(default_factory=dict)


def count_words(text: str) -> int:
    return len(text.split())


def _check_file(file: UploadedFile | None) -> UploadedFile:
    if file is None or not file.content:
        raise ValidationError("Audio file is required", details={"field": "file"})
    if len(file.content) > settings.max_upload_mb * 1024 * 1024:
        raise ValidationError(f"File size must be less than {settings.max_upload_mb}MB", details={"field": "file"})
    return file


def speech_job(
    text: str,
    voice_id: str,
    voice_name: str | None = None,
    model: str = "speech-2.6-hd",
    vol: float = 1.0,
    pitch: int = 0,
    speed: float = 1.0,
    language_boost: str = "Auto",
    with_transcript: bool = False,
) -> JobSpec:
    text = text.strip()
    if not text or not voice_id:
        raise ValidationError("Text and voiceId are required", details={"fields": ["text", "voiceId"]})
    if len(text) > settings.max_text_chars:
        raise ValidationError(f"Text must be at most {settings.max_text_chars} characters", details={"field": "text"})
    return JobSpec(
        kind="speech",
        cost=count_words(text),
        input_text=text,
        voice_id=voice_id,
        voice_name=voice_name or "Minimax Voice",
        model=model,
        params={
            "vol": vol,
            "pitch": pitch,
            "speed": speed,
            "language_boost": language_boost,
            "with_transcript": with_transcript,
        },
    )


def clone_job(
    file: UploadedFile | None,
    voice_name: str | None = None,
    preview_text: str | None = None,
    language_tag: str | None = None,
    gender_tag: str | None = None,
    need_noise_reduction: bool = False,
) -> JobSpec:
    file = _check_file(file)
    return JobSpec(
        kind="clone",
        cost=settings.clone_cost_credits,
        input_text=preview_text,
        file=file,
        voice_name=voice_name,
        params={
            "voice_name": voice_name,
            "preview_text": preview_text,
            "language_tag": language_tag,
            "gender_tag": gender_tag,
            "need_noise_reduction": need_noise_reduction,
        },
    )


def transcription_job(file: UploadedFile | None) -> JobSpec:
    return JobSpec(kind="transcription", cost=settings.transcription_cost_credits, file=_check_file(file))


def dubbing_job(
    file: UploadedFile | None,
    target_lang: str,
    source_lang: str = "auto",
    num_speakers: int = 0,
    disable_voice_cloning: bool = True,
) -> JobSpec:
    file = _check_file(file)
    if not target_lang:
        raise ValidationError("Target language is required", details={"field": "target_lang"})
    return JobSpec(
        kind="dubbing",
        cost=settings.dubbing_cost_credits,
        file=file,
        params={
            "target_lang": target_lang,
            "source_lang": source_lang or "auto",
            "num_speakers": num_speakers,
            "disable_voice_cloning": disable_voice_cloning,
        },
    )


def music_job(payload: dict) -> JobSpec:
    if not payload.get("idea") and not payload.get("lyrics"):
        raise ValidationError("Either idea or lyrics is required", details={"fields": ["idea", "lyrics"]})
    return JobSpec(
        kind="music",
        cost=settings.music_cost_credits,
        input_text=payload.get("lyrics") or payload.get("idea"),
        voice_name=payload.get("title"),
        params=payload,
    )


def _vendor_int(value, field: str, task_id: str) -> int | None:
    """Vendor numbers arrive as ints, floats or numeric strings. Anything else is skipped."""
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.warning("vendor_value_malformed", extra={"task_id": task_id, "error": f"{field}={value!r}"})
        return None


def task_view(task: dict) -> TaskView:
    return TaskView(
        id=task["id"],
        external_task_id=task["external_task_id"],
        kind=task["kind"],
        status=effective_status(task).value,
        progress=task["progress"],
        metadata=TaskMetadata(audio_url=task["audio_url"], srt_url=task["srt_url"], json_url=task["json_url"]),
        error_message=task["error_message"],
        cost=task["cost"],
        refunded_credits=task["refunded_credits"],
        voice_id=task["voice_id"],
        voice_name=task["voice_name"],
        created_at=task["created_at"],
        completed_at=task["completed_at"],
        expires_at=task["expires_at"],
    )


class TaskOrchestrator:
    """Drives a generation task from submission to a terminal state."""

    def __init__(self, vendor: VendorClient) -> None:
        self.vendor = vendor

    def _dispatch(self, api_key: str, job: JobSpec) -> VendorJob:
        p = job.params
        if job.kind == "speech":
            return self.vendor.submit_speech(api_key, text=job.input_text, voice_id=job.voice_id, model=job.model, **p)
        if job.kind == "clone":
            return self.vendor.clone_voice(api_key, file=job.file, **p)
        if job.kind == "transcription":
            return self.vendor.submit_transcription(api_key, file=job.file)
        if job.kind == "dubbing":
            return self.vendor.submit_dubbing(api_key, file=job.file, **p)
        if job.kind == "music":
            return self.vendor.submit_music(api_key, p)
        raise ValidationError(f"Unknown job kind: {job.kind}")

    def submit(self, user_id: str, job: JobSpec) -> SubmitResponse:
        meter = billing.meter_for(user_id, self.vendor)
        meter.authorize(user_id, job.cost)

        task_id = str(uuid4())
        db.create_task(
            task_id=task_id,
            user_id=user_id,
            kind=job.kind,
            billing_mode=meter.mode,
            input_text=job.input_text,
            input_file_name=job.file.filename if job.file else None,
            voice_id=job.voice_id,
            voice_name=job.voice_name,
            model=job.model,
            task_settings={k: v for k, v in job.params.items() if isinstance(v, (str, int, float, bool))},
        )

        # charged before dispatch so a concurrent request cannot spend the same credits
        if not meter.charge(user_id, task_id, job.cost):
            db.mark_task_failed(task_id, "Insufficient credits")
            raise InsufficientFundsError("Insufficient credits", details={"required": job.cost})

        try:
            result = self._dispatch(meter.api_key, job)
        except Exception as exc:
            message = exc.message if isinstance(exc, VendorError) else str(exc)
            db.mark_task_failed(task_id, (exc.body if isinstance(exc, VendorError) else None) or message)
            refunded = meter.refund(task_id, job.cost, note=f"dispatch failed: {message}")
            logger.warning(
                "task_dispatch_failed",
                extra={"task_id": task_id, "user_id": user_id, "kind": job.kind, "error": message, "amount": refunded},
            )
            raise

        if result.is_immediate:
            db.mark_task_done(
                task_id,
                audio_url=result.audio_url,
                srt_url=result.srt_url,
                json_url=result.json_url,
                voice_id=result.voice_id,
            )
        else:
            db.mark_task_processing(task_id, result.task_id)

        logger.info(
            "task_submitted",
            extra={"task_id": task_id, "external_task_id": result.task_id, "user_id": user_id, "kind": job.kind},
        )
        user = db.get_user(user_id)
        return SubmitResponse(
            task_id=result.task_id,
            local_task_id=task_id,
            audio_url=result.audio_url,
            voice_id=result.voice_id,
            status=TaskStatus.done.value if result.is_immediate else TaskStatus.processing.value,
            cost=job.cost,
            remaining_credits=int(user["credits"]) if user else None,
        )

    def poll(self, user_id: str, task_ref: str) -> TaskView:
        task = db.find_task_for_user(user_id, task_ref)
        if not task:
            raise NotFoundError("Task not found", details={"task_id": task_ref})
        if TaskStatus(task["status"]) in TERMINAL or not task["external_task_id"] or task["vendor_deleted_at"]:
            return task_view(task)

        remote = self.vendor.get_task(billing.api_key_for_task(task), task["external_task_id"])
        status = normalize_status(remote.get("status"))
        meta = remote.get("metadata") or {}

        if status is TaskStatus.done:
            db.mark_task_done(
                task["id"],
                audio_url=meta.get("audio_url") or remote.get("audio_url"),
                srt_url=meta.get("srt_url"),
                json_url=meta.get("json_url"),
            )
            logger.info("task_done", extra={"task_id": task["id"], "user_id": user_id})
        elif status is TaskStatus.failed:
            error = remote.get("error_message") or remote.get("error") or "Vendor reported an error"
            db.mark_task_failed(task["id"], str(error))
            logger.info("task_failed", extra={"task_id": task["id"], "user_id": user_id, "error": str(error)})
        elif remote.get("progress") is not None:
            progress = _vendor_int(remote["progress"], "progress", task["id"])
            if progress is not None:
                db.update_task_progress(task["id"], progress)

        return task_view(db.get_task(task["id"]))

    def delete(self, user_id: str, task_ref: str) -> int | None:
        """Delete the vendor-side task and return the credits the vendor gave back.

        Ledger tasks are refunded up to what they were charged. Tasks run on the
        caller's own key get the vendor's figure back as-is, since nothing
        left the ledger for them.
        """
        task = db.find_task_for_user(user_id, task_ref)
        if not task:
            raise NotFoundError("Task not found", details={"task_id": task_ref})
        if not task["external_task_id"]:
            raise ValidationError("Task has no vendor job to delete", details={"task_id": task["id"]})
        if task["vendor_deleted_at"]:
            raise ConflictError("Task was already deleted", details={"task_id": task["id"]})

        data = self.vendor.delete_tasks(billing.api_key_for_task(task), [task["external_task_id"]])
        if not db.mark_vendor_deleted(task["id"]):
            raise ConflictError("Task was already deleted", details={"task_id": task["id"]})
        # the vendor job is gone, so an unfinished task can never complete
        db.mark_task_failed(task["id"], "Deleted before completion")

        reported = data.get("refund_credits")
        reported = _vendor_int(reported, "refund_credits", task["id"]) if reported is not None else None
        if not reported:
            return None
        if task["billing_mode"] != billing.LedgerMeter.mode:
            return reported
        refunded = ledger.refund_task(task["id"], reported, note="vendor task deleted")
        logger.info(
            "task_deleted",
            extra={"task_id": task["id"], "user_id": user_id, "amount": refunded},
        )
        return refunded

    def history(self, user_id: str, limit: int = 50, offset: int = 0, kind: str | None = None) -> list[TaskView]:
        return [task_view(t) for t in db.list_tasks(user_id, limit=limit, offset=offset, kind=kind)]
