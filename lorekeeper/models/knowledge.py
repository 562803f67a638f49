"""Knowledge-base domain models: sources, fragments, vector records and results.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Models (bottom of the dependency graph -- imports nothing above
# ``lorekeeper.utils``).
#
# Two entities carry the lifecycle:
#
#   Source    -- aggregate root.  One uploaded document for one tenant.
#   Fragment  -- one chunk of a Source's text, independently embeddable.
#
# Everything else is a frozen value object passed across a boundary
# (chunker output, vector-store records, search hits, request / result
# envelopes, published events).
#
# All models use ``frozen=True``.  Lifecycle transitions on Source return an
# updated copy built with ``model_copy(update={...})``; callers persist the
# returned instance.  Status flow:
#
#   PENDING ──mark_processing()──→ PROCESSING ──mark_completed()──→ COMPLETED
#      │                               │
#      └──────mark_failed(reason)──────┴──────────────────────────→ FAILED
#
#   any non-deleted status ──soft_delete()──→ DELETED (terminal)
#
# COMPLETED and FAILED may re-enter PROCESSING (re-ingestion / retry).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lorekeeper.utils.errors import AlreadyDeletedError, InvalidTransitionError, ValidationError

MAX_TITLE_LENGTH = 255
MIN_FRAGMENT_LENGTH = 10
DEFAULT_CHARS_PER_TOKEN = 4
DEFAULT_STALE_AFTER_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_validation_error(exc: pydantic.ValidationError) -> str:
    """Flatten a pydantic error into ``"field: reason; field: reason"``."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "value"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


# ─── Enums ───────────────────────────────────────────────────────────
# (str, Enum) so values serialize as plain strings in SQLite rows,
# vector metadata and JSON log output.
class SourceStatus(str, Enum):
    """Lifecycle states for a knowledge source."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DELETED = "DELETED"


class SourceKind(str, Enum):
    """Document formats the parser understands."""

    PDF = "PDF"
    MARKDOWN = "MARKDOWN"
    URL = "URL"
    TEXT = "TEXT"


# ---------------------------------------------------------------------------
# Source -- aggregate root.
# ---------------------------------------------------------------------------
class Source(BaseModel):
    """One ingested document belonging to one tenant.

    ``id`` is ``None`` until the repository persists the source for the
    first time.  Once ``deleted_at`` is set every mutating method raises
    :class:`~lorekeeper.utils.errors.AlreadyDeletedError`.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = Field(default=None, description="Identifier assigned on first persist.")
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH, description="Display title.")
    tenant_id: str = Field(min_length=1, description="Owning tenant; also the vector namespace.")
    source_kind: SourceKind = Field(description="Format the content was parsed from.")
    content: str = Field(min_length=1, description="Full extracted text.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Caller metadata merged with parser metadata.",
    )
    status: SourceStatus = Field(default=SourceStatus.PENDING)
    error_message: str | None = Field(default=None, description="Set only while FAILED.")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deleted_at: datetime | None = Field(default=None, description="Presence implies soft-deleted.")

    @field_validator("title", "tenant_id", "content")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @classmethod
    def create(
        cls,
        *,
        title: str,
        tenant_id: str,
        source_kind: SourceKind,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Source:
        """Build a new PENDING source, raising the domain ``ValidationError`` on bad input."""
        try:
            return cls(
                title=title,
                tenant_id=tenant_id,
                source_kind=source_kind,
                content=content,
                metadata=dict(metadata or {}),
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(
                message=f"Invalid source: {describe_validation_error(exc)}"
            ) from exc

    # ── State queries ─────────────────────────────────────────────────

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None or self.status is SourceStatus.DELETED

    @property
    def is_processing(self) -> bool:
        return self.status is SourceStatus.PROCESSING

    @property
    def is_completed(self) -> bool:
        return self.status is SourceStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status is SourceStatus.FAILED

    def belongs_to_tenant(self, tenant_id: str) -> bool:
        return self.tenant_id == tenant_id

    def is_stale(
        self,
        max_age_days: int = DEFAULT_STALE_AFTER_DAYS,
        now: datetime | None = None,
    ) -> bool:
        """Return ``True`` if the source has not been touched for *max_age_days*."""
        now = now or _utcnow()
        return now - self.updated_at > timedelta(days=max_age_days)

    # ── Transitions ───────────────────────────────────────────────────

    def mark_processing(self) -> Source:
        self._ensure_not_deleted()
        return self._with_status(SourceStatus.PROCESSING, error_message=None)

    def mark_completed(self) -> Source:
        self._ensure_not_deleted()
        if self.status is not SourceStatus.PROCESSING:
            raise InvalidTransitionError(
                message=(
                    f"Cannot mark source {self.id} COMPLETED from {self.status.value}; "
                    "it must be PROCESSING"
                )
            )
        return self._with_status(SourceStatus.COMPLETED, error_message=None)

    def mark_failed(self, reason: str) -> Source:
        """Move to FAILED from any non-deleted status, recording *reason*."""
        self._ensure_not_deleted()
        return self._with_status(SourceStatus.FAILED, error_message=reason)

    def soft_delete(self) -> Source:
        self._ensure_not_deleted()
        now = _utcnow()
        return self.model_copy(
            update={"status": SourceStatus.DELETED, "deleted_at": now, "updated_at": now}
        )

    def update_metadata(self, patch: dict[str, Any]) -> Source:
        """Shallow-merge *patch* over the current metadata."""
        self._ensure_not_deleted()
        return self.model_copy(
            update={"metadata": {**self.metadata, **patch}, "updated_at": _utcnow()}
        )

    def _with_status(self, status: SourceStatus, error_message: str | None) -> Source:
        return self.model_copy(
            update={"status": status, "error_message": error_message, "updated_at": _utcnow()}
        )

    def _ensure_not_deleted(self) -> None:
        if self.is_deleted:
            raise AlreadyDeletedError(message=f"Source {self.id} is already deleted")


# ---------------------------------------------------------------------------
# Fragment -- one embeddable chunk of a Source.
# ---------------------------------------------------------------------------
class Fragment(BaseModel):
    """A chunk of a source's text.

    Fragments have no lifecycle of their own; they are created and deleted
    as a batch with their source.  ``position`` is the stable join key
    between a fragment and its embedding.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = Field(default=None, description="Identifier assigned on persist.")
    source_id: str = Field(min_length=1, description="Owning source.")
    content: str = Field(min_length=MIN_FRAGMENT_LENGTH, description="Chunk text.")
    position: int = Field(ge=0, description="Zero-based order within the source.")
    token_count: int = Field(gt=0, description="Estimated tokens in content.")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Open map; the chunker stores start_index / end_index here.",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _default_token_count(cls, data: Any) -> Any:
        if (
            isinstance(data, dict)
            and data.get("token_count") is None
            and isinstance(data.get("content"), str)
        ):
            data = {**data, "token_count": cls.estimate_token_count(data["content"])}
        return data

    @field_validator("content")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @classmethod
    def create(
        cls,
        *,
        source_id: str,
        content: str,
        position: int,
        token_count: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Fragment:
        """Build a new fragment, raising the domain ``ValidationError`` on bad input."""
        try:
            return cls(
                source_id=source_id,
                content=content,
                position=position,
                token_count=token_count,
                metadata=dict(metadata or {}),
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(
                message=f"Invalid fragment at position {position}: {describe_validation_error(exc)}"
            ) from exc

    @staticmethod
    def estimate_token_count(content: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
        return max(1, math.ceil(len(content) / chars_per_token))

    def belongs_to_source(self, source_id: str) -> bool:
        return self.source_id == source_id

    def update_metadata(self, patch: dict[str, Any]) -> Fragment:
        return self.model_copy(
            update={"metadata": {**self.metadata, **patch}, "updated_at": _utcnow()}
        )


# ---------------------------------------------------------------------------
# Chunker output
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """One window produced by the chunker; offsets index the input text."""

    model_config = ConfigDict(frozen=True)

    content: str
    position: int = Field(ge=0)
    tokens: int = Field(ge=0)
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Vector store records
# ---------------------------------------------------------------------------
class VectorMetadata(BaseModel):
    """Denormalized fragment data stored alongside each vector.

    Lets a search hit be rendered without a relational join.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)
    content: str
    position: int = Field(ge=0)
    token_count: int = Field(ge=0)


class VectorRecord(BaseModel):
    """A vector upsert input.  ``id`` equals the fragment id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    embedding: list[float]
    metadata: VectorMetadata


class VectorSearchResult(BaseModel):
    """A similarity-search hit, score in ``[0, 1]`` (higher is closer)."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float
    metadata: VectorMetadata


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------
class ParsedDocument(BaseModel):
    """Plain text extracted from a buffer plus parser metadata."""

    model_config = ConfigDict(frozen=True)

    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / result envelopes
# ---------------------------------------------------------------------------
class IngestionRequest(BaseModel):
    """Input to the ingestion service.

    Fields are deliberately loose; :mod:`lorekeeper.services.knowledge.validation`
    checks them before anything is persisted.
    """

    model_config = ConfigDict(frozen=True)

    title: str
    tenant_id: str
    source_kind: str
    buffer: bytes
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestionResult(BaseModel):
    """Outcome of one ingestion run."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(description="Identifier of the persisted source.")
    title: str
    fragment_count: int = Field(ge=0)
    content_size: int = Field(ge=0, description="UTF-8 byte length of the extracted text.")
    status: SourceStatus = Field(description="Status read back from the persisted source.")
    error_message: str | None = None
    ingestion_time: float = Field(default=0.0, ge=0.0, description="Wall-clock seconds.")


class DeletionRequest(BaseModel):
    """Input to the deletion service."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    tenant_id: str


class DeletionResult(BaseModel):
    """Outcome of one deletion run."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    fragments_deleted: int = Field(ge=0)
    vectors_deleted: bool = Field(description="False when best-effort vector deletion failed.")


# ---------------------------------------------------------------------------
# Events -- published after a pipeline finishes, consumed by notifiers.
# ---------------------------------------------------------------------------
class SourceIngested(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: Literal["source.ingested"] = "source.ingested"
    source_id: str
    tenant_id: str
    title: str
    fragment_count: int = Field(ge=0)
    occurred_at: datetime = Field(default_factory=_utcnow)


class SourceDeleted(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: Literal["source.deleted"] = "source.deleted"
    source_id: str
    tenant_id: str
    fragments_deleted: int = Field(ge=0)
    vectors_deleted: bool
    occurred_at: datetime = Field(default_factory=_utcnow)


KnowledgeEvent = SourceIngested | SourceDeleted
