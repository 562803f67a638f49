"""Public interface definitions for every external collaborator.

The knowledge services depend only on these abstract base classes.
Concrete adapters live in ``lorekeeper/providers/`` and are wired together
in ``lorekeeper/main.py``; unit tests inject mocks or the in-memory adapters.

CONCRETE PROVIDER MAP:
    Interface              ->  Concrete implementations
    ─────────────────────────────────────────────────────
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IVectorStoreProvider   ->  ChromaDBVectorStore, InMemoryVectorStore
    IKnowledgeRepository   ->  SQLiteKnowledgeRepository
    IDocumentParser        ->  DocumentParser
    IEventPublisher        ->  InMemoryEventPublisher
"""

from lorekeeper.interfaces.document_parser import IDocumentParser
from lorekeeper.interfaces.embedding_provider import IEmbeddingProvider
from lorekeeper.interfaces.event_publisher import IEventPublisher
from lorekeeper.interfaces.knowledge_repository import IKnowledgeRepository
from lorekeeper.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IDocumentParser",
    "IEmbeddingProvider",
    "IEventPublisher",
    "IKnowledgeRepository",
    "IVectorStoreProvider",
]
