"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **validate -> parse -> persist source -> chunk -> embed ->
persist fragments -> upsert vectors -> complete**.

The :class:`IngestionService` implements the **Orchestrator pattern**: it
coordinates the parser, chunker, embedding provider, vector store and
repository without any of them knowing about each other.  All collaborators
are injected through the constructor.

Failure policy:

* Validation and parsing failures happen before a Source exists; nothing is
  persisted and the error propagates as-is.
* Once the Source has been saved as PROCESSING, any error triggers one
  attempt to save it as FAILED with the error message.  If that attempt
  itself fails it is logged and the *original* error is re-raised.

Alignment invariant: the repository may return saved fragments in any
order, so each fragment is matched to its embedding through ``position``.
Array indices into the repository's return value are never used.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from lorekeeper.models.knowledge import (
    Fragment,
    IngestionRequest,
    IngestionResult,
    Source,
    SourceIngested,
    TextChunk,
    VectorMetadata,
    VectorRecord,
)
from lorekeeper.services.knowledge.validation import validate_ingestion_request
from lorekeeper.utils.errors import IntegrityError, RepositoryError

if TYPE_CHECKING:
    from lorekeeper.interfaces.document_parser import IDocumentParser
    from lorekeeper.interfaces.embedding_provider import IEmbeddingProvider
    from lorekeeper.interfaces.event_publisher import IEventPublisher
    from lorekeeper.interfaces.knowledge_repository import IKnowledgeRepository
    from lorekeeper.interfaces.vector_store_provider import IVectorStoreProvider
    from lorekeeper.services.knowledge.chunker import TextChunker

logger = structlog.get_logger(logger_name=__name__)


class IngestionService:
    """Turns an uploaded document into a COMPLETED source with stored vectors.

    Parameters
    ----------
    parser:
        Extracts plain text from the raw buffer.
    chunker:
        Splits the text into overlapping, position-numbered windows.
    embedding_provider:
        Generates one vector per chunk.
    vector_store:
        Stores fragment vectors in the tenant's namespace.
    repository:
        Persists the source and its fragments.
    event_publisher:
        Optional channel notified with :class:`SourceIngested` on success.
    """

    def __init__(
        self,
        parser: IDocumentParser,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        repository: IKnowledgeRepository,
        event_publisher: IEventPublisher | None = None,
    ) -> None:
        self._parser = parser
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._repository = repository
        self._event_publisher = event_publisher

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, request: IngestionRequest) -> IngestionResult:
        """Run the full pipeline for one document.

        Returns
        -------
        IngestionResult
            Source id, title, fragment count, UTF-8 byte size of the text
            and the status read back from the persisted source.

        Raises
        ------
        ValidationError
            Bad input; nothing was persisted.
        ParserError
            The buffer could not be parsed; nothing was persisted.
        IntegrityError
            Embeddings could not be aligned with fragments; the source is FAILED.
        ExternalServiceError, RepositoryError
            A collaborator failed after the source was persisted; the source
            is FAILED (best effort).
        """
        start = time.monotonic()
        source_kind = validate_ingestion_request(request)

        logger.info(
            "ingestion_started",
            tenant_id=request.tenant_id,
            title=request.title,
            source_kind=source_kind.value,
            buffer_size=len(request.buffer),
        )

        parsed = await self._parser.parse(request.buffer, source_kind)

        source = Source.create(
            title=request.title,
            tenant_id=request.tenant_id,
            source_kind=source_kind,
            content=parsed.text,
            metadata={**request.metadata, **parsed.metadata},
        )
        source = await self._repository.save_source(source.mark_processing())
        if source.id is None:
            raise RepositoryError(
                message="Repository did not assign an id to the saved source",
                provider_name=self._repository.get_provider_name(),
            )

        # From here on the source exists durably: every failure must try to
        # leave it FAILED before the original error propagates.
        try:
            fragment_count = await self._index(source, parsed.text)
            source = await self._repository.save_source(source.mark_completed())
        except Exception as exc:
            await self._mark_failed(source, exc)
            raise

        elapsed = time.monotonic() - start
        logger.info(
            "ingestion_complete",
            source_id=source.id,
            tenant_id=source.tenant_id,
            fragments=fragment_count,
            status=source.status.value,
            elapsed_s=round(elapsed, 3),
        )

        await self._publish(
            SourceIngested(
                source_id=source.id,
                tenant_id=source.tenant_id,
                title=source.title,
                fragment_count=fragment_count,
            )
        )

        return IngestionResult(
            source_id=source.id,
            title=source.title,
            fragment_count=fragment_count,
            content_size=len(parsed.text.encode("utf-8")),
            status=source.status,
            error_message=source.error_message,
            ingestion_time=elapsed,
        )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _index(self, source: Source, text: str) -> int:
        """Chunk, embed, persist and upsert; return the number of fragments."""
        chunks = self._chunker.chunk(text)
        fragments = [self._to_fragment(source, chunk) for chunk in chunks]

        embeddings = await self._embedding_provider.embed_batch([c.content for c in chunks])
        if len(embeddings) != len(chunks):
            raise IntegrityError(
                message=(
                    f"Embedding provider returned {len(embeddings)} vectors "
                    f"for {len(chunks)} chunks"
                ),
                provider_name=self._embedding_provider.get_provider_name(),
            )
        embedding_by_position = {
            chunk.position: embedding
            for chunk, embedding in zip(chunks, embeddings, strict=True)
        }

        saved = await self._repository.save_fragments(fragments)
        records = self._build_vector_records(source, saved, embedding_by_position)
        await self._vector_store.upsert(records)

        logger.debug(
            "fragments_indexed",
            source_id=source.id,
            fragments=len(saved),
            vector_store=self._vector_store.get_provider_name(),
        )
        return len(saved)

    @staticmethod
    def _to_fragment(source: Source, chunk: TextChunk) -> Fragment:
        return Fragment.create(
            source_id=source.id or "",
            content=chunk.content,
            position=chunk.position,
            token_count=chunk.tokens,
            metadata={
                "start_index": chunk.start_index,
                "end_index": chunk.end_index,
                "tokens": chunk.tokens,
            },
        )

    @staticmethod
    def _build_vector_records(
        source: Source,
        fragments: list[Fragment],
        embedding_by_position: dict[int, list[float]],
    ) -> list[VectorRecord]:
        """Pair each saved fragment with its embedding by ``position``."""
        if len(fragments) != len(embedding_by_position):
            raise IntegrityError(
                message=(
                    f"Cannot align {len(embedding_by_position)} embeddings "
                    f"with {len(fragments)} saved fragments"
                )
            )
        if {f.position for f in fragments} != embedding_by_position.keys():
            raise IntegrityError(
                message="Saved fragment positions do not match the embedded chunk positions"
            )

        records: list[VectorRecord] = []
        for fragment in sorted(fragments, key=lambda f: f.position):
            if fragment.id is None:
                raise IntegrityError(
                    message=f"Saved fragment at position {fragment.position} has no id"
                )
            records.append(
                VectorRecord(
                    id=fragment.id,
                    embedding=embedding_by_position[fragment.position],
                    metadata=VectorMetadata(
                        source_id=fragment.source_id,
                        tenant_id=source.tenant_id,
                        content=fragment.content,
                        position=fragment.position,
                        token_count=fragment.token_count,
                    ),
                )
            )
        return records

    # ------------------------------------------------------------------
    # Failure handling / side effects
    # ------------------------------------------------------------------

    async def _mark_failed(self, source: Source, exc: Exception) -> None:
        """Best-effort FAILED transition; never masks the original error."""
        logger.warning(
            "ingestion_failed",
            source_id=source.id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        try:
            await self._repository.save_source(source.mark_failed(str(exc)))
        except Exception as recovery_exc:  # noqa: BLE001
            logger.error(
                "source_mark_failed_error",
                source_id=source.id,
                error=str(recovery_exc),
                original_error=str(exc),
            )

    async def _publish(self, event: SourceIngested) -> None:
        if self._event_publisher is None:
            return
        try:
            await self._event_publisher.publish(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "event_publish_failed",
                event_type=event.event_type,
                source_id=event.source_id,
                error=str(exc),
            )
