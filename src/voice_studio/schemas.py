from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys, also accepts snake_case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# task submission


class SpeechRequest(CamelModel):
    text: str
    voice_id: str
    voice_name: str | None = None
    model: str = "speech-2.6-hd"
    vol: float = 1.0
    pitch: int = 0
    speed: float = 1.0
    language_boost: str = "Auto"
    with_transcript: bool = False


class MusicRequest(CamelModel):
    title: str | None = None
    idea: str | None = None
    lyrics: str | None = None
    style_id: str | None = None
    mood_id: str | None = None
    scenario_id: str | None = None
    n: int = Field(default=1, ge=1, le=4)
    rewrite_idea_switch: bool = False

    @model_validator(mode="after")
    def _idea_or_lyrics(self) -> "MusicRequest":
        if not self.idea and not self.lyrics:
            raise ValueError("Either idea or lyrics is required")
        return self

    def vendor_payload(self) -> dict:
        payload = {"n": self.n, "rewrite_idea_switch": self.rewrite_idea_switch}
        for key in ("title", "idea", "lyrics", "style_id", "mood_id", "scenario_id"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        return payload


class TaskRef(CamelModel):
    task_id: str = Field(min_length=1)


class SubmitResponse(CamelModel):
    task_id: str | None = None
    local_task_id: str
    audio_url: str | None = None
    voice_id: str | None = None
    status: str
    cost: int
    remaining_credits: int | None = None


class TaskMetadata(BaseModel):
    audio_url: str | None = None
    srt_url: str | None = None
    json_url: str | None = None


class TaskView(BaseModel):
    id: str
    external_task_id: str | None = None
    kind: str
    status: str
    progress: int = 0
    metadata: TaskMetadata
    error_message: str | None = None
    cost: int = 0
    refunded_credits: int = 0
    voice_id: str | None = None
    voice_name: str | None = None
    created_at: str
    completed_at: str | None = None
    expires_at: str | None = None


# account


class ProfileUpdate(CamelModel):
    display_name: str = Field(min_length=1, max_length=100)


class UserResponse(BaseModel):
    id: str
    email: str | None = None
    display_name: str | None = None
    credits: int
    is_blocked: bool
    created_at: str


class ApiKeyRequest(CamelModel):
    api_key: str
    provider: str = "ai33"


class OrderCreateRequest(CamelModel):
    package_id: str
    network: str = Field(min_length=1, max_length=32)
    txid: str | None = Field(default=None, max_length=200)
    wallet_address: str | None = Field(default=None, max_length=200)


class OrderResponse(BaseModel):
    id: str
    user_id: str
    package_id: str | None = None
    credits: int
    amount_usdt: float
    network: str | None = None
    txid: str | None = None
    status: str
    admin_notes: str | None = None
    created_at: str
    processed_at: str | None = None


class PackageResponse(BaseModel):
    id: str
    name: str
    credits: int
    price_usdt: float
    description: str | None = None
    is_active: bool
    sort_order: int


# admin


class AdminCreditsRequest(CamelModel):
    target_user_id: str = Field(min_length=1)
    credits: StrictInt
    note: str | None = None


class ApproveOrderRequest(CamelModel):
    order_id: str = Field(min_length=1)
    target_user_id: str | None = None
    credits: StrictInt | None = None
    notes: str | None = None


class RejectOrderRequest(CamelModel):
    order_id: str = Field(min_length=1)
    notes: str | None = None


class PackageRequest(CamelModel):
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)
    credits: StrictInt = Field(gt=0)
    price_usdt: float = Field(ge=0)
    description: str | None = None
    is_active: bool = True
    sort_order: int = 0


class AdminApiKeyRequest(CamelModel):
    target_user_id: str = Field(min_length=1)
    api_key: str
    provider: str = "ai33"


class BlockRequest(CamelModel):
    blocked: bool
