"""Pydantic domain models for the knowledge base."""

from lorekeeper.models.knowledge import (
    DeletionRequest,
    DeletionResult,
    Fragment,
    IngestionRequest,
    IngestionResult,
    KnowledgeEvent,
    ParsedDocument,
    Source,
    SourceDeleted,
    SourceIngested,
    SourceKind,
    SourceStatus,
    TextChunk,
    VectorMetadata,
    VectorRecord,
    VectorSearchResult,
)

__all__ = [
    "DeletionRequest",
    "DeletionResult",
    "Fragment",
    "IngestionRequest",
    "IngestionResult",
    "KnowledgeEvent",
    "ParsedDocument",
    "Source",
    "SourceDeleted",
    "SourceIngested",
    "SourceKind",
    "SourceStatus",
    "TextChunk",
    "VectorMetadata",
    "VectorRecord",
    "VectorSearchResult",
]
