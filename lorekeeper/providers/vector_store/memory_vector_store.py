"""In-memory vector store.

Process-local implementation of
:class:`~lorekeeper.interfaces.vector_store_provider.IVectorStoreProvider`
keyed by tenant namespace, then record id.  Similarity is cosine, mapped to
``[0, 1]`` the same way the ChromaDB adapter maps cosine distance.

Nothing survives a restart; intended for development and tests.
"""

from __future__ import annotations

import math

import structlog

from lorekeeper.interfaces.vector_store_provider import IVectorStoreProvider
from lorekeeper.models.knowledge import VectorRecord, VectorSearchResult
from lorekeeper.utils.errors import VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_LIMIT = 5
_DEFAULT_MIN_SCORE = 0.7


class InMemoryVectorStore(IVectorStoreProvider):
    """Dict-backed vector store with strict per-tenant namespaces.

    *default_limit* and *min_score* apply to :meth:`search` calls that do
    not pass their own.
    """

    def __init__(
        self,
        batch_size: int = 100,
        default_limit: int = _DEFAULT_LIMIT,
        min_score: float = _DEFAULT_MIN_SCORE,
    ) -> None:
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}
        self._batch_size = batch_size
        self._default_limit = default_limit
        self._min_score = min_score
        self.upsert_calls = 0

    async def upsert(self, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        dimension = len(records[0].embedding)
        for record in records:
            if len(record.embedding) != dimension:
                raise VectorStoreError(
                    message=(
                        f"Record {record.id} has dimension {len(record.embedding)}, "
                        f"expected {dimension}"
                    ),
                    provider_name=self.get_provider_name(),
                )

        for start in range(0, len(records), self._batch_size):
            for record in records[start : start + self._batch_size]:
                namespace = self._namespaces.setdefault(record.metadata.tenant_id, {})
                namespace[record.id] = record
            self.upsert_calls += 1
        return len(records)

    async def search(
        self,
        query_embedding: list[float],
        tenant_id: str,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[VectorSearchResult]:
        limit = self._default_limit if limit is None else limit
        min_score = self._min_score if min_score is None else min_score
        namespace = self._namespaces.get(tenant_id, {})
        hits = [
            VectorSearchResult(
                id=record.id,
                score=_similarity(query_embedding, record.embedding),
                metadata=record.metadata,
            )
            for record in namespace.values()
        ]
        hits = [hit for hit in hits if hit.score >= min_score]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[: max(limit, 0)]

    async def delete_by_source(self, source_id: str, tenant_id: str) -> int:
        namespace = self._namespaces.get(tenant_id, {})
        doomed = [rid for rid, rec in namespace.items() if rec.metadata.source_id == source_id]
        for rid in doomed:
            del namespace[rid]
        logger.debug(
            "memory_delete_by_source",
            source_id=source_id,
            tenant_id=tenant_id,
            deleted_count=len(doomed),
        )
        return len(doomed)

    async def health_check(self) -> bool:
        return True

    def get_provider_name(self) -> str:
        return "memory"

    def get(self, record_id: str, tenant_id: str) -> VectorRecord | None:
        """Return a stored record, or ``None``."""
        return self._namespaces.get(tenant_id, {}).get(record_id)

    def count(self, tenant_id: str | None = None) -> int:
        """Return the number of records in one namespace, or in all of them."""
        if tenant_id is not None:
            return len(self._namespaces.get(tenant_id, {}))
        return sum(len(ns) for ns in self._namespaces.values())


def _similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity clamped to ``[0, 1]``; zero vectors score 0."""
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0.0:
        return 0.0
    return max(0.0, min(1.0, dot / norm))
