"""
Core data models for the asset ingestion engine.

Separated to avoid circular dependencies between the transport, retry,
dedup and status layers. Records handed back to callers are frozen.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from asset_ingest.core.dedup import compute_content_hash

USER_SCOPE_SENTINEL = "user"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssetKind(str, Enum):
    AUDIO = "audio"
    DECAL = "decal"


class TransportKind(str, Enum):
    PRIVILEGED = "privileged"  # Host channel, bypasses origin restrictions
    DIRECT = "direct"          # Plain network call


class ErrorKind(str, Enum):
    """Classification carried from the transport boundary up to the caller."""
    FATAL = "fatal"
    RETRYABLE = "retryable"
    EXHAUSTED = "exhausted"
    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FATAL = "fatal"
    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"


class OwnerScope(BaseModel):
    """Identity context an upload is submitted under (account or group)."""
    user_id: Optional[str] = None
    group_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_group(self) -> bool:
        return bool((self.group_id or "").strip())

    @property
    def normalized_key(self) -> str:
        # No group means an individual upload; all of those share one scope.
        return (self.group_id or "").strip() or USER_SCOPE_SENTINEL


class UploadRequest(BaseModel):
    """Immutable description of one piece of content to submit."""
    content: bytes = Field(repr=False)
    content_hash: str
    display_name: str
    asset_kind: AssetKind
    owner_scope: OwnerScope = Field(default_factory=OwnerScope)
    file_name: Optional[str] = None
    description: Optional[str] = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def build(
        cls,
        content: bytes,
        *,
        display_name: str,
        asset_kind: AssetKind,
        owner_scope: Optional[OwnerScope] = None,
        file_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "UploadRequest":
        return cls(
            content=content,
            content_hash=compute_content_hash(content),
            display_name=display_name,
            asset_kind=asset_kind,
            owner_scope=owner_scope or OwnerScope(),
            file_name=file_name,
            description=description,
        )

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class UploadAttempt(BaseModel):
    request_id: str
    attempt_number: int
    started_at: datetime
    transport_used: Optional[TransportKind] = None
    outcome: AttemptOutcome
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class IngestionFailure(BaseModel):
    kind: ErrorKind
    message: str
    retry_after_seconds: Optional[float] = None

    model_config = ConfigDict(frozen=True)


class IngestionResult(BaseModel):
    """Terminal record of one submit() call."""
    request_id: str
    asset_id: Optional[str] = None
    error: Optional[IngestionFailure] = None
    attempts: tuple[UploadAttempt, ...] = ()
    duplicate_of: Optional["DuplicateRecord"] = None
    completed_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def succeeded(self) -> bool:
        return self.asset_id is not None and self.error is None


class SignalSource(str, Enum):
    PUBLIC_REACHABILITY = "public_reachability"
    AUTHENTICATED_REACHABILITY = "authenticated_reachability"
    CATALOG_METADATA = "catalog_metadata"
    DETAIL_PAGE = "detail_page"


class SignalReading(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PENDING = "pending"
    GATED = "gated"                  # Exists, but public access forbidden
    OWNER_VISIBLE = "owner_visible"  # Owner can fetch it; says nothing about approval
    INCONCLUSIVE = "inconclusive"


CONCLUSIVE_READINGS = frozenset(
    {SignalReading.ACCEPTED, SignalReading.DECLINED, SignalReading.PENDING}
)


class StatusSignal(BaseModel):
    """One observation from one source. Produced per resolution, never persisted."""
    source: SignalSource
    raw_indicator: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reading: SignalReading = SignalReading.INCONCLUSIVE
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    restricted: Optional[bool] = None

    model_config = ConfigDict(frozen=True)

    @property
    def conclusive(self) -> bool:
        return self.reading in CONCLUSIVE_READINGS


class VerdictStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class AssetStatusVerdict(BaseModel):
    asset_id: str
    asset_kind: AssetKind
    status: VerdictStatus
    name: str
    resolved_at: datetime = Field(default_factory=utcnow)
    decided_by: Optional[SignalSource] = None
    conclusive: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def settled(self) -> bool:
        return self.conclusive and self.status != VerdictStatus.PENDING


class Unresolvable(BaseModel):
    """No source could be reached at all. Infrastructure failure, not an asset state."""
    asset_id: str
    asset_kind: AssetKind
    reasons: tuple[str, ...] = ()
    resolved_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


class DuplicateRecord(BaseModel):
    content_hash: str
    owner_scope_key: str
    asset_id: str
    asset_kind: AssetKind
    display_name: str = ""
    status: str = "unknown"
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool
    reason: str = "none"  # content_hash | asset_id | none
    matched_record: Optional[DuplicateRecord] = None

    model_config = ConfigDict(frozen=True)


IngestionResult.model_rebuild()
