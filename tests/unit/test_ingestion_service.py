"""Unit tests for IngestionService -- pipeline orchestration and failure policy."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from lorekeeper.interfaces.knowledge_repository import IKnowledgeRepository
from lorekeeper.models.knowledge import (
    Fragment,
    IngestionRequest,
    ParsedDocument,
    Source,
    SourceIngested,
    SourceStatus,
)
from lorekeeper.services.knowledge.chunker import TextChunker
from lorekeeper.services.knowledge.ingestion_service import IngestionService
from lorekeeper.utils.errors import (
    EmbeddingError,
    IntegrityError,
    ParserError,
    RepositoryError,
    ValidationError,
)
from tests.conftest import SAMPLE_TEXT, fake_embeddings

SOURCE_ID = "9b1f7c5e-4d47-4c1f-9e4b-0f6f3f2a1c11"


def _request(**overrides) -> IngestionRequest:
    fields = {
        "title": "Onboarding guide",
        "tenant_id": "tenant-a",
        "source_kind": "text",
        "buffer": SAMPLE_TEXT.encode("utf-8"),
    }
    fields.update(overrides)
    return IngestionRequest(**fields)


def _parsed(text: str, **metadata) -> ParsedDocument:
    return ParsedDocument(text=text, metadata={"source_kind": "TEXT", **metadata})


def _mock_repository(reverse_fragments: bool = False) -> MagicMock:
    """Repository mock that assigns ids and records every saved source."""
    repo = MagicMock(spec=IKnowledgeRepository)
    repo.saved_sources = []

    async def _save_source(source: Source) -> Source:
        if source.id is None:
            source = source.model_copy(update={"id": SOURCE_ID})
        repo.saved_sources.append(source)
        return source

    async def _save_fragments(fragments: list[Fragment]) -> list[Fragment]:
        saved = [
            f.model_copy(update={"id": f"frag-{f.position}"}) for f in fragments
        ]
        return list(reversed(saved)) if reverse_fragments else saved

    repo.save_source = AsyncMock(side_effect=_save_source)
    repo.save_fragments = AsyncMock(side_effect=_save_fragments)
    repo.get_provider_name.return_value = "mock_repository"
    return repo


def _service(
    parser,
    embedding_provider,
    vector_store,
    repository,
    event_publisher=None,
    chunker: TextChunker | None = None,
) -> IngestionService:
    return IngestionService(
        parser=parser,
        chunker=chunker or TextChunker(),
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        repository=repository,
        event_publisher=event_publisher,
    )


# ======================================================================
# Success paths
# ======================================================================


class TestIngestSuccess:
    @pytest.mark.asyncio
    async def test_ingest_end_to_end_with_sqlite_and_memory_store(
        self,
        mock_parser,
        mock_embedding_provider,
        memory_vector_store,
        repository,
        mock_event_publisher,
    ) -> None:
        service = _service(
            mock_parser,
            mock_embedding_provider,
            memory_vector_store,
            repository,
            mock_event_publisher,
        )

        result = await service.ingest(_request(metadata={"department": "people"}))

        expected_chunks = TextChunker().chunk(SAMPLE_TEXT.strip())
        assert result.status == SourceStatus.COMPLETED
        assert result.fragment_count == len(expected_chunks) > 1
        assert result.content_size == len(SAMPLE_TEXT.strip().encode("utf-8"))
        assert result.error_message is None

        stored = await repository.find_source_by_id(result.source_id)
        assert stored is not None
        assert stored.status == SourceStatus.COMPLETED
        assert stored.metadata["department"] == "people"

        fragments = await repository.find_fragments_by_source(result.source_id)
        assert [f.position for f in fragments] == list(range(result.fragment_count))
        assert memory_vector_store.count("tenant-a") == result.fragment_count
        for fragment in fragments:
            record = memory_vector_store.get(fragment.id, "tenant-a")
            assert record is not None
            assert record.metadata.position == fragment.position
            assert record.metadata.source_id == result.source_id
            assert record.metadata.content == fragment.content
            assert fragment.metadata["start_index"] < fragment.metadata["end_index"]

        event = mock_event_publisher.publish.await_args.args[0]
        assert isinstance(event, SourceIngested)
        assert event.fragment_count == result.fragment_count

    @pytest.mark.asyncio
    async def test_embeddings_aligned_by_position_when_repository_reorders(
        self, mock_parser, mock_embedding_provider, mock_vector_store
    ) -> None:
        repository = _mock_repository(reverse_fragments=True)
        service = _service(mock_parser, mock_embedding_provider, mock_vector_store, repository)

        await service.ingest(_request())

        chunks = TextChunker().chunk(SAMPLE_TEXT.strip())
        expected = fake_embeddings([c.content for c in chunks])
        records = mock_vector_store.upsert.await_args.args[0]

        assert len(records) == len(chunks)
        for record in records:
            assert record.id == f"frag-{record.metadata.position}"
            assert record.embedding == expected[record.metadata.position]
            assert record.metadata.tenant_id == "tenant-a"

    @pytest.mark.asyncio
    async def test_source_saved_processing_then_completed(
        self, mock_parser, mock_embedding_provider, mock_vector_store
    ) -> None:
        repository = _mock_repository()
        service = _service(mock_parser, mock_embedding_provider, mock_vector_store, repository)

        await service.ingest(_request())

        statuses = [s.status for s in repository.saved_sources]
        assert statuses == [SourceStatus.PROCESSING, SourceStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_parser_metadata_overrides_caller_metadata(
        self, mock_embedding_provider, mock_vector_store
    ) -> None:
        parser = MagicMock()
        parser.parse = AsyncMock(return_value=_parsed(SAMPLE_TEXT.strip(), title="From PDF"))
        repository = _mock_repository()
        service = _service(parser, mock_embedding_provider, mock_vector_store, repository)

        await service.ingest(_request(metadata={"title": "From caller", "team": "ops"}))

        metadata = repository.saved_sources[-1].metadata
        assert metadata["title"] == "From PDF"
        assert metadata["team"] == "ops"

    @pytest.mark.asyncio
    async def test_content_size_counts_utf8_bytes(
        self, mock_embedding_provider, mock_vector_store
    ) -> None:
        text = "Grüße aus Köln, schöne Straße am Fluss."
        parser = MagicMock()
        parser.parse = AsyncMock(return_value=_parsed(text))
        service = _service(parser, mock_embedding_provider, mock_vector_store, _mock_repository())

        result = await service.ingest(_request())

        assert result.content_size == len(text.encode("utf-8"))
        assert result.content_size > len(text)

    @pytest.mark.asyncio
    async def test_event_publish_failure_does_not_fail_ingest(
        self, mock_parser, mock_embedding_provider, mock_vector_store, mock_event_publisher
    ) -> None:
        mock_event_publisher.publish.side_effect = RuntimeError("queue closed")
        service = _service(
            mock_parser,
            mock_embedding_provider,
            mock_vector_store,
            _mock_repository(),
            mock_event_publisher,
        )

        result = await service.ingest(_request())

        assert result.status == SourceStatus.COMPLETED


# ======================================================================
# Failure paths
# ======================================================================


class TestIngestFailures:
    @pytest.mark.asyncio
    async def test_validation_error_touches_nothing(
        self, mock_parser, mock_embedding_provider, mock_vector_store
    ) -> None:
        repository = _mock_repository()
        service = _service(mock_parser, mock_embedding_provider, mock_vector_store, repository)

        with pytest.raises(ValidationError):
            await service.ingest(_request(title=""))

        mock_parser.parse.assert_not_awaited()
        repository.save_source.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_parse_failure_persists_nothing(
        self, mock_embedding_provider, mock_vector_store
    ) -> None:
        parser = MagicMock()
        parser.parse = AsyncMock(side_effect=ParserError(message="corrupt PDF"))
        repository = _mock_repository()
        service = _service(parser, mock_embedding_provider, mock_vector_store, repository)

        with pytest.raises(ParserError, match="corrupt PDF"):
            await service.ingest(_request(source_kind="pdf"))

        repository.save_source.assert_not_awaited()
        mock_embedding_provider.embed_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch_marks_source_failed(
        self, mock_vector_store
    ) -> None:
        """Four chunks but three vectors: IntegrityError, FAILED, no upsert."""
        parser = MagicMock()
        parser.parse = AsyncMock(return_value=_parsed("q" * 160))
        embedder = MagicMock()
        embedder.embed_batch = AsyncMock(return_value=[[0.1, 0.2]] * 3)
        embedder.get_provider_name.return_value = "short_embedder"
        repository = _mock_repository()
        chunker = TextChunker(chunk_size=10, overlap=0, chars_per_token=4)
        service = _service(parser, embedder, mock_vector_store, repository, chunker=chunker)

        with pytest.raises(IntegrityError, match="3 vectors for 4 chunks"):
            await service.ingest(_request())

        mock_vector_store.upsert.assert_not_awaited()
        repository.save_fragments.assert_not_awaited()
        failed = repository.saved_sources[-1]
        assert failed.status == SourceStatus.FAILED
        assert "3 vectors for 4 chunks" in failed.error_message

    @pytest.mark.asyncio
    async def test_embedding_error_marks_source_failed_and_propagates(
        self, mock_parser, mock_vector_store
    ) -> None:
        embedder = MagicMock()
        embedder.embed_batch = AsyncMock(
            side_effect=EmbeddingError(message="rate limited", provider_name="openai_embedding")
        )
        embedder.get_provider_name.return_value = "openai_embedding"
        repository = _mock_repository()
        service = _service(mock_parser, embedder, mock_vector_store, repository)

        with pytest.raises(EmbeddingError, match="rate limited"):
            await service.ingest(_request())

        assert repository.saved_sources[-1].status == SourceStatus.FAILED
        assert "rate limited" in repository.saved_sources[-1].error_message

    @pytest.mark.asyncio
    async def test_failed_recovery_does_not_mask_original_error(
        self, mock_parser, mock_vector_store
    ) -> None:
        embedder = MagicMock()
        embedder.embed_batch = AsyncMock(side_effect=EmbeddingError(message="embedder down"))
        embedder.get_provider_name.return_value = "embedder"
        repository = _mock_repository()
        original_save = repository.save_source.side_effect

        async def _save_source(source: Source) -> Source:
            if source.status == SourceStatus.FAILED:
                raise RepositoryError(message="database is locked")
            return await original_save(source)

        repository.save_source.side_effect = _save_source
        service = _service(mock_parser, embedder, mock_vector_store, repository)

        with pytest.raises(EmbeddingError, match="embedder down"):
            await service.ingest(_request())

    @pytest.mark.asyncio
    async def test_vector_store_failure_marks_source_failed(
        self, mock_parser, mock_embedding_provider, mock_vector_store
    ) -> None:
        from lorekeeper.utils.errors import VectorStoreError

        mock_vector_store.upsert.side_effect = VectorStoreError(message="collection missing")
        repository = _mock_repository()
        service = _service(mock_parser, mock_embedding_provider, mock_vector_store, repository)

        with pytest.raises(VectorStoreError):
            await service.ingest(_request())

        assert repository.saved_sources[-1].status == SourceStatus.FAILED

    @pytest.mark.asyncio
    async def test_text_below_fragment_minimum_fails_source(
        self, mock_embedding_provider, mock_vector_store
    ) -> None:
        parser = MagicMock()
        parser.parse = AsyncMock(return_value=_parsed("tiny"))
        repository = _mock_repository()
        service = _service(parser, mock_embedding_provider, mock_vector_store, repository)

        with pytest.raises(ValidationError, match="fragment"):
            await service.ingest(_request())

        assert repository.saved_sources[-1].status == SourceStatus.FAILED
        mock_embedding_provider.embed_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repository_without_id_raises(
        self, mock_parser, mock_embedding_provider, mock_vector_store
    ) -> None:
        repository = MagicMock(spec=IKnowledgeRepository)
        repository.save_source = AsyncMock(side_effect=lambda source: source)
        repository.get_provider_name.return_value = "broken_repo"
        service = _service(mock_parser, mock_embedding_provider, mock_vector_store, repository)

        with pytest.raises(RepositoryError, match="did not assign an id"):
            await service.ingest(_request())
