"""Vector store provider implementations.

ChromaDBVectorStore persists vectors on disk with one collection per tenant;
InMemoryVectorStore keeps them in a dict for development and tests.  Both
implement IVectorStoreProvider and are selected in ``lorekeeper/main.py``
from the ``VECTOR_STORE`` setting.
"""

from lorekeeper.providers.vector_store.chromadb_provider import ChromaDBVectorStore
from lorekeeper.providers.vector_store.memory_vector_store import InMemoryVectorStore

__all__ = ["ChromaDBVectorStore", "InMemoryVectorStore"]
