"""Knowledge-base pipelines: chunking, ingestion and deletion.

Data flow for ingestion:

    bytes -> IDocumentParser -> text -> TextChunker -> IEmbeddingProvider
          -> IKnowledgeRepository (source + fragments)
          -> IVectorStoreProvider (vectors, tenant namespace)

Deletion runs in reverse: vectors (best effort), then fragments and the
source inside one repository transaction.
"""

from lorekeeper.services.knowledge.chunker import TextChunker
from lorekeeper.services.knowledge.deletion_service import DeletionService
from lorekeeper.services.knowledge.ingestion_service import IngestionService

__all__ = ["DeletionService", "IngestionService", "TextChunker"]
