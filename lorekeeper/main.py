"""Composition root: wires providers into the knowledge services.

``build_services`` is the single place where concrete adapters are chosen
from :class:`~lorekeeper.config.settings.Settings`.  The CLI and any
embedding application call it; tests construct services directly with
mocks or in-memory adapters.

Heavy third-party imports (chromadb, openai, PyMuPDF) are deferred into the
``_build_*`` factories so importing this module stays cheap.
"""

from __future__ import annotations

from typing import Any

import structlog

from lorekeeper.config.loader import load_config
from lorekeeper.config.settings import Settings
from lorekeeper.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)


def _build_embedding_provider(app_settings: Settings):  # noqa: ANN202
    """Select the embedding provider named by ``EMBEDDING_PROVIDER``.

    ``auto`` priority: OpenAI/OpenAI-compatible (if an API key is set) ->
    Nomic/Ollama (if reachable).  Returns ``None`` if nothing is available.
    """
    from lorekeeper.interfaces.embedding_provider import IEmbeddingProvider

    choice = app_settings.embedding_provider.lower()
    if choice not in ("auto", "openai", "nomic"):
        raise ConfigurationError(
            message=f"Unknown EMBEDDING_PROVIDER '{app_settings.embedding_provider}'"
        )

    if choice in ("auto", "openai") and app_settings.openai_api_key:
        from lorekeeper.providers.embedding.openai_embedding_provider import (
            OpenAIEmbeddingProvider,
        )

        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    if choice in ("auto", "nomic"):
        from lorekeeper.providers.embedding.nomic_embedding_provider import (
            NomicEmbeddingProvider,
        )

        provider = NomicEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    return None


def _build_vector_store(app_settings: Settings):  # noqa: ANN202
    """Construct the vector store named by ``VECTOR_STORE``."""
    backend = app_settings.vector_store.lower()
    if backend == "memory":
        from lorekeeper.providers.vector_store.memory_vector_store import InMemoryVectorStore

        return InMemoryVectorStore(
            batch_size=app_settings.vector_upsert_batch_size,
            default_limit=app_settings.search_default_limit,
            min_score=app_settings.search_min_score,
        )
    if backend == "chromadb":
        from lorekeeper.providers.vector_store.chromadb_provider import ChromaDBVectorStore

        return ChromaDBVectorStore(
            persist_directory=app_settings.chromadb_persist_dir,
            collection_prefix=app_settings.chromadb_collection_prefix,
            batch_size=app_settings.vector_upsert_batch_size,
            default_limit=app_settings.search_default_limit,
            min_score=app_settings.search_min_score,
        )
    raise ConfigurationError(message=f"Unknown VECTOR_STORE '{app_settings.vector_store}'")


def _build_chunker(app_settings: Settings):  # noqa: ANN202
    from lorekeeper.services.knowledge.chunker import TextChunker

    return TextChunker(
        chunk_size=app_settings.chunk_size,
        overlap=app_settings.chunk_overlap,
        chars_per_token=app_settings.chars_per_token,
    )


async def _build_repository(app_settings: Settings):  # noqa: ANN202
    from lorekeeper.providers.repository.sqlite_knowledge_repository import (
        SQLiteKnowledgeRepository,
    )

    repository = SQLiteKnowledgeRepository(db_path=app_settings.db_path)
    await repository.initialize()
    return repository


async def build_services(
    custom_settings: Settings | None = None,
    require_embeddings: bool = True,
    config_path: str = "config/config.yaml",
) -> dict[str, Any]:
    """Assemble every collaborator and both knowledge services.

    Parameters
    ----------
    custom_settings:
        Settings to use instead of reading the environment.
    require_embeddings:
        When ``False`` (deletion-only callers) a missing embedding provider
        is tolerated and ``ingestion_service`` is ``None``.
    config_path:
        YAML file merged under the settings by
        :func:`~lorekeeper.config.loader.load_config`.

    Returns
    -------
    dict[str, Any]
        Keys: ``settings``, ``config``, ``repository``, ``vector_store``,
        ``embedding_provider``, ``parser``, ``event_publisher``,
        ``ingestion_service``, ``deletion_service``.

    Raises
    ------
    ConfigurationError
        An unknown backend is named, or no embedding provider is available
        while *require_embeddings* is set.
    """
    from lorekeeper.providers.events.memory_event_publisher import InMemoryEventPublisher
    from lorekeeper.providers.parser.document_parser import DocumentParser
    from lorekeeper.services.knowledge.deletion_service import DeletionService
    from lorekeeper.services.knowledge.ingestion_service import IngestionService

    app_settings = custom_settings or Settings()
    config = load_config(config_path, app_settings)
    app_info = config.get("app", {})

    chunker = _build_chunker(app_settings)
    vector_store = _build_vector_store(app_settings)
    embedding_provider = _build_embedding_provider(app_settings)
    if embedding_provider is None and require_embeddings:
        raise ConfigurationError(
            message=(
                "No embedding provider available. Set OPENAI_API_KEY, or run Ollama "
                f"at OLLAMA_BASE_URL (currently {app_settings.ollama_base_url or 'unset'})."
            )
        )
    repository = await _build_repository(app_settings)
    parser = DocumentParser()
    event_publisher = InMemoryEventPublisher(maxsize=app_settings.event_queue_size)

    ingestion_service = None
    if embedding_provider is not None:
        ingestion_service = IngestionService(
            parser=parser,
            chunker=chunker,
            embedding_provider=embedding_provider,
            vector_store=vector_store,
            repository=repository,
            event_publisher=event_publisher,
        )
    deletion_service = DeletionService(
        vector_store=vector_store,
        repository=repository,
        event_publisher=event_publisher,
    )

    logger.info(
        "services_built",
        app=app_info.get("name", "lorekeeper"),
        version=app_info.get("version"),
        env=app_settings.app_env,
        embedding=embedding_provider.get_provider_name() if embedding_provider else None,
        vector_store=vector_store.get_provider_name(),
        repository=repository.get_provider_name(),
    )

    return {
        "settings": app_settings,
        "config": config,
        "repository": repository,
        "vector_store": vector_store,
        "embedding_provider": embedding_provider,
        "parser": parser,
        "event_publisher": event_publisher,
        "ingestion_service": ingestion_service,
        "deletion_service": deletion_service,
    }
