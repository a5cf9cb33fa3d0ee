"""Gateway request/response schemas."""

from typing import Any

from pydantic import BaseModel, Field

from synthgate.gateway.types import (
    AddCredentialResult,
    GenerationKind,
    GenerationPayload,
    ReassemblyPolicy,
    RetryMode,
    Task,
)


# --- Generation ---


class GenerateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)
    kind: GenerationKind = GenerationKind.AUDIO
    voice: str = ""
    model: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    task_id: str | None = Field(None, max_length=100)
    priority: int = 0
    mode: RetryMode | None = None
    reassembly: ReassemblyPolicy | None = None

    def to_task(self) -> Task:
        payload = GenerationPayload(
            content=self.content,
            kind=self.kind,
            voice=self.voice,
            model=self.model,
            params=self.params,
        )
        if self.task_id:
            return Task(payload=payload, task_id=self.task_id, priority=self.priority)
        return Task(payload=payload, priority=self.priority)


class BatchGenerateRequest(BaseModel):
    tasks: list[GenerateRequest] = Field(..., min_length=1, max_length=500)
    mode: RetryMode | None = None


class ErrorOut(BaseModel):
    error_class: str
    user_message: str
    technical_message: str
    retryable: bool
    status_code: int = 0
    retry_after: float | None = None


class GenerateResultOut(BaseModel):
    task_id: str
    status: str
    text: str | None = None
    audio_base64: str | None = None  # batch only; single audio calls return raw bytes
    attempts: int = 0
    from_cache: bool = False
    credential_id: str = ""
    latency_ms: int = 0
    error: ErrorOut | None = None


class BatchGenerateResponse(BaseModel):
    items: list[GenerateResultOut]
    total: int
    succeeded: int


# --- Pool ---


class PoolStatusOut(BaseModel):
    current_slot_id: str
    total: int
    available: int
    usage_ratio: float
    earliest_cooldown_expiry: float | None
    exhausted: bool


class GatewayStatusResponse(BaseModel):
    provider: str
    retry_mode: str
    pool: PoolStatusOut
    throttle: dict[str, Any]
    cache: dict[str, Any] | None


class CredentialCreateRequest(BaseModel):
    secret: str = Field(..., min_length=1, max_length=512)


class CredentialCreateResponse(BaseModel):
    result: AddCredentialResult
    total: int


class CredentialItem(BaseModel):
    id: str
    hint: str  # first 4 + "..." + last 4 chars
    active: bool
    cooling: bool
    cooldown_until: float | None
    usage_count: int
    last_used_at: float | None


class CredentialListResponse(BaseModel):
    items: list[CredentialItem]
    total: int


class MessageResponse(BaseModel):
    message: str
