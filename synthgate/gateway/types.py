"""Core types and DTOs for the generation gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from synthgate.gateway.errors import GatewayError

ResultData = Union[bytes, str]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GenerationKind(str, Enum):
    """What the provider is asked to produce."""

    AUDIO = "audio"
    TEXT = "text"


class RetryMode(str, Enum):
    """Operating mode that selects the retry budget."""

    AUTO = "auto"  # short budget, caller has a fallback path
    PERSISTENT = "persistent"  # long budget, no fallback exists


class ResultStatus(str, Enum):
    """Terminal status of a logical call."""

    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"  # best-effort text reassembly with missing chunks
    SKIPPED = "skipped"  # nothing speakable, no call issued


class ReassemblyPolicy(str, Enum):
    """How a chunked unit behaves when some chunks fail."""

    STRICT = "strict"
    BEST_EFFORT = "best_effort"  # text only


class AddCredentialResult(str, Enum):
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    INVALID_FORMAT = "invalid_format"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationPayload:
    """Opaque request descriptor: content plus voice/model parameters."""

    content: str
    kind: GenerationKind = GenerationKind.AUDIO
    voice: str = ""
    model: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    def cache_fields(self) -> dict[str, Any]:
        """Fields that decide whether two payloads produce the same result."""
        return {
            "kind": self.kind.value,
            "content": self.content,
            "voice": self.voice,
            "model": self.model,
            "params": self.params,
        }

    def with_content(self, content: str) -> GenerationPayload:
        return replace(self, content=content)


@dataclass(frozen=True)
class Task:
    """One unit of work submitted by a caller. Immutable once submitted."""

    payload: GenerationPayload
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    priority: int = 0  # lower runs first


# ---------------------------------------------------------------------------
# Credential pool state
# ---------------------------------------------------------------------------


@dataclass
class CredentialSlot:
    """One rotatable credential with its own usage and cooldown state."""

    slot_id: str
    secret: str = field(repr=False)
    key_hash: str = ""
    usage_count: int = 0
    last_used_at: float = 0.0
    cooldown_until: float | None = None
    is_active: bool = False

    def is_cooling(self, now: float) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now


@dataclass(frozen=True)
class PoolStatus:
    """Snapshot derived from live slot state."""

    current_slot_id: str
    total: int
    available: int
    usage_ratio: float  # 0.0 - 1.0 of the estimated per-key budget
    earliest_cooldown_expiry: float | None
    exhausted: bool

    def to_dict(self) -> dict:
        return {
            "current_slot_id": self.current_slot_id,
            "total": self.total,
            "available": self.available,
            "usage_ratio": self.usage_ratio,
            "earliest_cooldown_expiry": self.earliest_cooldown_expiry,
            "exhausted": self.exhausted,
        }


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry:
    key: str
    result: ResultData
    created_at: float  # epoch seconds

    def is_expired(self, now: float, max_age: float) -> bool:
        return now - self.created_at >= max_age


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class GenerationResult:
    """Outcome of one logical call, cached or not."""

    task_id: str = ""
    status: ResultStatus = ResultStatus.SUCCESS
    data: ResultData | None = None
    error: GatewayError | None = None
    attempts: int = 0
    from_cache: bool = False
    credential_id: str = ""
    latency_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def raise_for_error(self) -> None:
        if self.error is not None and self.status in (ResultStatus.FAILED, ResultStatus.PARTIAL):
            raise self.error

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "from_cache": self.from_cache,
            "credential_id": self.credential_id,
            "latency_ms": self.latency_ms,
            "error": self.error.to_dict() if self.error else None,
        }
