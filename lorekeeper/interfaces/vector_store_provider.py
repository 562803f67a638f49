"""Abstract base class for vector-store service providers.

Defines the contract for storing, searching and deleting fragment vectors.
Records are partitioned by tenant into isolated namespaces: a search in
namespace A never returns a record written under namespace B.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from lorekeeper.models.knowledge import VectorRecord, VectorSearchResult


# Concrete implementations:
#   ChromaDBVectorStore -- local persistent ChromaDB, one collection per tenant
#   InMemoryVectorStore -- process-local dict, for development and tests
# Located in: lorekeeper/providers/vector_store/
class IVectorStoreProvider(ABC):
    """Contract for namespaced vector storage used by the knowledge pipelines.

    All methods are async to support network-backed stores without blocking
    the event loop.
    """

    @abstractmethod
    async def upsert(self, records: list[VectorRecord]) -> int:
        """Insert or replace records, keyed by ``record.id``.

        Each record is written to the namespace named by
        ``record.metadata.tenant_id``.  Empty input is a no-op.  Large inputs
        are split into provider-sized batches and submitted sequentially.

        Returns
        -------
        int
            The number of records written.

        Raises
        ------
        lorekeeper.utils.errors.VectorStoreError
            If the store rejects the write.
        """

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        tenant_id: str,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[VectorSearchResult]:
        """Return the closest records within *tenant_id*'s namespace.

        Parameters
        ----------
        query_embedding:
            Vector to compare against.
        tenant_id:
            Namespace to search.  Other namespaces are never consulted.
        limit:
            Maximum number of results; ``None`` uses the store's configured
            default (5 unless overridden).
        min_score:
            Results scoring below this similarity are dropped; ``None`` uses
            the store's configured threshold (0.7 unless overridden).

        Returns
        -------
        list[VectorSearchResult]
            Sorted by score, descending.
        """

    @abstractmethod
    async def delete_by_source(self, source_id: str, tenant_id: str) -> int:
        """Delete every record whose ``source_id`` matches, within *tenant_id*.

        A source with no stored records is not an error.

        Returns
        -------
        int
            The number of records deleted.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` if the backing store answers a trivial request."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""
