from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from voice_studio import orchestrator as jobs
from voice_studio.api.deps import envelope, get_orchestrator, rate_limited
from voice_studio.auth import get_current_user
from voice_studio.orchestrator import JOB_KINDS, TaskOrchestrator
from voice_studio.schemas import MusicRequest, SpeechRequest, TaskRef
from voice_studio.vendor import UploadedFile

router = APIRouter(prefix="/v1/tasks", tags=["tasks"])


def _upload(file: UploadFile | None) -> UploadedFile | None:
    if file is None:
        return None
    return UploadedFile(
        filename=file.filename or "upload",
        content=file.file.read(),
        content_type=file.content_type or "application/octet-stream",
    )


@router.post("/speech")
def submit_speech(
    payload: SpeechRequest,
    user: dict = Depends(rate_limited("speech")),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    job = jobs.speech_job(**payload.model_dump())
    result = orchestrator.submit(user["id"], job)
    return envelope(result.model_dump(by_alias=True))


@router.post("/clone")
def submit_clone(
    file: UploadFile | None = File(None),
    voice_name: str | None = Form(None),
    preview_text: str | None = Form(None),
    language_tag: str | None = Form(None),
    gender_tag: str | None = Form("male"),
    need_noise_reduction: bool = Form(False),
    user: dict = Depends(rate_limited("clone")),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    job = jobs.clone_job(
        _upload(file),
        voice_name=voice_name,
        preview_text=preview_text,
        language_tag=language_tag,
        gender_tag=gender_tag,
        need_noise_reduction=need_noise_reduction,
    )
    result = orchestrator.submit(user["id"], job)
    return envelope(result.model_dump(by_alias=True))


@router.post("/transcription")
def submit_transcription(
    file: UploadFile | None = File(None),
    user: dict = Depends(rate_limited("transcription")),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    result = orchestrator.submit(user["id"], jobs.transcription_job(_upload(file)))
    return envelope(result.model_dump(by_alias=True))


@router.post("/dubbing")
def submit_dubbing(
    file: UploadFile | None = File(None),
    target_lang: str = Form(""),
    source_lang: str = Form("auto"),
    num_speakers: int = Form(0),
    disable_voice_cloning: bool = Form(True),
    user: dict = Depends(rate_limited("dubbing")),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    job = jobs.dubbing_job(
        _upload(file),
        target_lang=target_lang,
        source_lang=source_lang,
        num_speakers=num_speakers,
        disable_voice_cloning=disable_voice_cloning,
    )
    result = orchestrator.submit(user["id"], job)
    return envelope(result.model_dump(by_alias=True))


@router.post("/music")
def submit_music(
    payload: MusicRequest,
    user: dict = Depends(rate_limited("music")),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    result = orchestrator.submit(user["id"], jobs.music_job(payload.vendor_payload()))
    return envelope(result.model_dump(by_alias=True))


@router.post("/poll")
def poll_task(
    payload: TaskRef,
    user: dict = Depends(get_current_user),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    return envelope(orchestrator.poll(user["id"], payload.task_id).model_dump())


@router.post("/delete")
def delete_task(
    payload: TaskRef,
    user: dict = Depends(get_current_user),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    refunded = orchestrator.delete(user["id"], payload.task_id)
    return envelope({"success": True, "refund_credits": refunded})


@router.get("")
def list_tasks(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    kind: str | None = Query(default=None, pattern=f"^({'|'.join(JOB_KINDS)})$"),
    user: dict = Depends(get_current_user),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    tasks = orchestrator.history(user["id"], limit=limit, offset=offset, kind=kind)
    return envelope({"tasks": [t.model_dump() for t in tasks], "limit": limit, "offset": offset})


@router.get("/{task_id}")
def get_task(
    task_id: str,
    user: dict = Depends(get_current_user),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    return envelope(orchestrator.poll(user["id"], task_id).model_dump())
