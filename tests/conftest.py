"""Shared pytest fixtures for the lorekeeper test suite."""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
import structlog

from lorekeeper.config.settings import Settings
from lorekeeper.interfaces.document_parser import IDocumentParser
from lorekeeper.interfaces.embedding_provider import IEmbeddingProvider
from lorekeeper.interfaces.event_publisher import IEventPublisher
from lorekeeper.interfaces.vector_store_provider import IVectorStoreProvider
from lorekeeper.models.knowledge import (
    Fragment,
    ParsedDocument,
    Source,
    SourceKind,
    VectorMetadata,
    VectorRecord,
)
from lorekeeper.providers.repository.sqlite_knowledge_repository import (
    SQLiteKnowledgeRepository,
)
from lorekeeper.providers.vector_store.memory_vector_store import InMemoryVectorStore

SAMPLE_TEXT = (
    "Retrieval augmented generation grounds model answers in documents the "
    "tenant uploaded. Each source is parsed, split into overlapping fragments "
    "and embedded so that similar passages can be found again later. "
) * 40


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Build a Settings instance with deterministic test defaults."""
    defaults = {
        "openai_api_key": "",
        "openai_base_url": "",
        "openai_embedding_model": "",
        "ollama_base_url": "http://localhost:11434",
        "vector_store": "memory",
        "embedding_provider": "auto",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def make_source(**overrides) -> Source:
    fields = {
        "title": "Employee Handbook",
        "tenant_id": "tenant-a",
        "source_kind": SourceKind.TEXT,
        "content": "Handbook text about holidays and expenses.",
    }
    fields.update(overrides)
    return Source.create(**fields)


def make_fragment(source_id: str, position: int = 0, **overrides) -> Fragment:
    fields = {
        "source_id": source_id,
        "content": f"Fragment number {position} with enough text to store.",
        "position": position,
    }
    fields.update(overrides)
    return Fragment.create(**fields)


def make_record(
    record_id: str,
    embedding: list[float],
    source_id: str = "s1",
    tenant_id: str = "tenant-a",
    position: int = 0,
) -> VectorRecord:
    return VectorRecord(
        id=record_id,
        embedding=embedding,
        metadata=VectorMetadata(
            source_id=source_id,
            tenant_id=tenant_id,
            content=f"content of {record_id}",
            position=position,
            token_count=5,
        ),
    )


def fake_embeddings(texts: list[str]) -> list[list[float]]:
    """Deterministic 3-dim vectors, one per input text."""
    return [[float(len(t) % 7 + 1), float(i + 1), 1.0] for i, t in enumerate(texts)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_logging():
    """Undo logging configuration bound to pytest's per-test capture streams."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)
    # cache_logger_on_first_use pins the stream into module-level proxies.
    for name, module in list(sys.modules.items()):
        if name.startswith("lorekeeper"):
            for value in vars(module).values():
                if isinstance(value, structlog._config.BoundLoggerLazyProxy):
                    value.__dict__.pop("bind", None)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mock_embedding_provider() -> MagicMock:
    """Embedding provider mock returning one vector per input text."""
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.embed_batch = AsyncMock(side_effect=lambda texts: fake_embeddings(texts))
    mock.get_dimension.return_value = 3
    mock.get_provider_name.return_value = "mock_embedding"
    mock.is_available.return_value = True
    return mock


@pytest.fixture
def mock_parser() -> MagicMock:
    """Parser mock that returns SAMPLE_TEXT for any buffer."""
    mock = MagicMock(spec=IDocumentParser)
    mock.parse = AsyncMock(
        return_value=ParsedDocument(
            text=SAMPLE_TEXT.strip(),
            metadata={"source_kind": "TEXT", "original_size": len(SAMPLE_TEXT)},
        )
    )
    mock.supports.return_value = True
    mock.get_provider_name.return_value = "mock_parser"
    return mock


@pytest.fixture
def mock_vector_store() -> MagicMock:
    mock = MagicMock(spec=IVectorStoreProvider)
    mock.upsert = AsyncMock(side_effect=lambda records: len(records))
    mock.search = AsyncMock(return_value=[])
    mock.delete_by_source = AsyncMock(return_value=0)
    mock.health_check = AsyncMock(return_value=True)
    mock.get_provider_name.return_value = "mock_vectors"
    return mock


@pytest.fixture
def mock_event_publisher() -> MagicMock:
    mock = MagicMock(spec=IEventPublisher)
    mock.publish = AsyncMock(return_value=None)
    mock.get_provider_name.return_value = "mock_events"
    return mock


@pytest.fixture
def memory_vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore(batch_size=2)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "knowledge.db"


@pytest_asyncio.fixture
async def repository(db_path: Path) -> SQLiteKnowledgeRepository:
    repo = SQLiteKnowledgeRepository(db_path=db_path)
    await repo.initialize()
    return repo


@pytest.fixture
def random_id() -> str:
    return str(uuid.uuid4())
