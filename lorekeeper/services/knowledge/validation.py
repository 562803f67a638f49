"""Input validation run at the top of each knowledge pipeline.

Both services call these before touching any collaborator, so a
:class:`~lorekeeper.utils.errors.ValidationError` always means nothing was
persisted.
"""

from __future__ import annotations

import uuid

from lorekeeper.models.knowledge import (
    MAX_TITLE_LENGTH,
    DeletionRequest,
    IngestionRequest,
    SourceKind,
)
from lorekeeper.utils.errors import ValidationError


def parse_source_kind(value: str | SourceKind) -> SourceKind:
    """Return the :class:`SourceKind` for *value* (case-insensitive)."""
    if isinstance(value, SourceKind):
        return value
    try:
        return SourceKind(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(kind.value for kind in SourceKind)
        raise ValidationError(
            message=f"Unsupported source kind '{value}'; expected one of: {allowed}"
        ) from None


def validate_ingestion_request(request: IngestionRequest) -> SourceKind:
    """Check an ingestion request and return its resolved source kind."""
    if not request.title or not request.title.strip():
        raise ValidationError(message="Title must not be empty")
    if len(request.title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            message=f"Title must be at most {MAX_TITLE_LENGTH} characters, got {len(request.title)}"
        )
    _require_tenant(request.tenant_id)
    if not request.buffer:
        raise ValidationError(message="Document buffer must not be empty")
    return parse_source_kind(request.source_kind)


def validate_deletion_request(request: DeletionRequest) -> None:
    """Check that both identifiers of a deletion request are well formed."""
    if not request.source_id or not request.source_id.strip():
        raise ValidationError(message="Source id must not be empty")
    try:
        uuid.UUID(request.source_id)
    except ValueError:
        raise ValidationError(
            message=f"Source id '{request.source_id}' is not a valid UUID"
        ) from None
    _require_tenant(request.tenant_id)


def _require_tenant(tenant_id: str) -> None:
    if not tenant_id or not tenant_id.strip():
        raise ValidationError(message="Tenant id must not be empty")
