"""ChromaDB vector store adapter.

Wraps ``chromadb.PersistentClient`` to implement
:class:`~lorekeeper.interfaces.vector_store_provider.IVectorStoreProvider`.
Each tenant gets its own collection, which is how namespaces are isolated:
a query only ever touches the collection of the tenant it names.  Uses
cosine distance; similarity is reported as ``1 - distance`` clamped to
``[0, 1]``.
"""

from __future__ import annotations

import hashlib
import os
import re
from typing import Any

# ChromaDB ships PostHog telemetry; disable it before chromadb is imported.
# The env var, the posthog switch and the client Settings below each cover
# a different chromadb release.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import pydantic
import structlog

from lorekeeper.interfaces.vector_store_provider import IVectorStoreProvider
from lorekeeper.models.knowledge import VectorMetadata, VectorRecord, VectorSearchResult
from lorekeeper.utils.errors import VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_BATCH_SIZE = 100
_DEFAULT_LIMIT = 5
_DEFAULT_MIN_SCORE = 0.7
_SLUG_MAX = 32
_SLUG_INVALID = re.compile(r"[^a-zA-Z0-9_-]+")


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that is never meant to run.

    Vectors always arrive pre-computed from an IEmbeddingProvider.  Passing
    this stops ChromaDB from downloading its default ONNX model when a
    collection is created.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "lorekeeper supplies pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        """Return function name (required by ChromaDB's EmbeddingFunction protocol)."""
        return "noop_precomputed"


class ChromaDBVectorStore(IVectorStoreProvider):
    """Vector store backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for ChromaDB's on-disk data.
    collection_prefix:
        Prefix of every per-tenant collection name.
    batch_size:
        Maximum records per ``upsert`` call.
    default_limit, min_score:
        Used by :meth:`search` when the caller passes ``None``.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_prefix: str = "lorekeeper",
        batch_size: int = _DEFAULT_BATCH_SIZE,
        default_limit: int = _DEFAULT_LIMIT,
        min_score: float = _DEFAULT_MIN_SCORE,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._persist_directory = persist_directory
        self._collection_prefix = collection_prefix
        self._batch_size = batch_size
        self._default_limit = default_limit
        self._min_score = min_score
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collections: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, records: list[VectorRecord]) -> int:
        """Upsert records into their tenants' collections in fixed-size batches."""
        if not records:
            return 0

        by_tenant: dict[str, list[VectorRecord]] = {}
        for record in records:
            by_tenant.setdefault(record.metadata.tenant_id, []).append(record)

        try:
            total = 0
            batches = 0
            for tenant_id, tenant_records in by_tenant.items():
                collection = self._collection_for(tenant_id)
                for start in range(0, len(tenant_records), self._batch_size):
                    batch = tenant_records[start : start + self._batch_size]
                    collection.upsert(
                        ids=[r.id for r in batch],
                        embeddings=[r.embedding for r in batch],
                        documents=[r.metadata.content for r in batch],
                        metadatas=[self._to_chroma_metadata(r.metadata) for r in batch],
                    )
                    total += len(batch)
                    batches += 1

            logger.info("chromadb_upsert", count=total, batches=batches, tenants=len(by_tenant))
            return total
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def search(
        self,
        query_embedding: list[float],
        tenant_id: str,
        limit: int | None = None,
        min_score: float | None = None,
    ) -> list[VectorSearchResult]:
        limit = self._default_limit if limit is None else limit
        min_score = self._min_score if min_score is None else min_score
        if limit <= 0:
            return []
        try:
            collection = self._existing_collection(tenant_id)
            if collection is None:
                return []
            stored = collection.count()
            if stored == 0:
                return []

            results = collection.query(
                query_embeddings=[query_embedding],
                n_results=min(limit, stored),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB search failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ids = results["ids"][0] if results.get("ids") else []
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)

        hits: list[VectorSearchResult] = []
        for record_id, document, meta, distance in zip(
            ids, documents, metadatas, distances, strict=True
        ):
            score = max(0.0, min(1.0, 1.0 - distance))
            if score < min_score:
                continue
            try:
                metadata = self._from_chroma_metadata(meta or {}, document or "", tenant_id)
            except pydantic.ValidationError as exc:
                logger.warning("chromadb_invalid_metadata", record_id=record_id, error=str(exc))
                continue
            hits.append(VectorSearchResult(id=record_id, score=score, metadata=metadata))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        logger.info(
            "chromadb_search",
            tenant_id=tenant_id,
            raw_results=len(ids),
            results_count=len(hits),
            top_score=hits[0].score if hits else 0.0,
        )
        return hits

    async def delete_by_source(self, source_id: str, tenant_id: str) -> int:
        """Delete every record of *source_id* in *tenant_id*'s collection."""
        try:
            collection = self._existing_collection(tenant_id)
            count = 0
            if collection is not None:
                existing = collection.get(where={"source_id": source_id})
                count = len(existing["ids"]) if existing["ids"] else 0
            if count > 0:
                collection.delete(where={"source_id": source_id})

            logger.info(
                "chromadb_delete_by_source",
                source_id=source_id,
                tenant_id=tenant_id,
                deleted_count=count,
            )
            return count
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB delete_by_source failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("chromadb_health_check_failed", error=str(exc))
            return False

    def get_provider_name(self) -> str:
        return "chromadb"

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def collection_name(self, tenant_id: str) -> str:
        """Return the collection that holds *tenant_id*'s vectors.

        ChromaDB restricts names to ``[a-zA-Z0-9._-]``, so the tenant id is
        slugged; a digest of the raw id keeps two tenants whose slugs
        collide (``"a/b"`` and ``"a.b"``) in separate collections.
        """
        slug = _SLUG_INVALID.sub("-", tenant_id).strip("-_")[:_SLUG_MAX] or "tenant"
        digest = hashlib.sha256(tenant_id.encode("utf-8")).hexdigest()[:12]
        return f"{self._collection_prefix}-{slug}-{digest}"

    def _collection_for(self, tenant_id: str) -> Any:
        name = self.collection_name(tenant_id)
        collection = self._collections.get(name)
        if collection is not None:
            return collection

        # Newer ChromaDB releases reject an embedding function that differs
        # from the one persisted with an existing collection; reopen it with
        # whatever was persisted in that case.
        try:
            collection = self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            collection = self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )
        self._collections[name] = collection
        return collection

    def _existing_collection(self, tenant_id: str) -> Any | None:
        """Like :meth:`_collection_for`, but never creates the collection.

        Reads and deletes for a tenant that has nothing stored return
        ``None`` here instead of leaving an empty collection behind.
        """
        name = self.collection_name(tenant_id)
        if name in self._collections:
            return self._collections[name]
        # list_collections() yields names on some chromadb releases and
        # Collection objects on others.
        existing = {getattr(c, "name", c) for c in self._client.list_collections()}
        if name not in existing:
            return None
        return self._collection_for(tenant_id)

    # ------------------------------------------------------------------
    # Metadata mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_chroma_metadata(metadata: VectorMetadata) -> dict[str, Any]:
        # ``content`` travels as the Chroma document, not as metadata.
        return {
            "source_id": metadata.source_id,
            "tenant_id": metadata.tenant_id,
            "position": metadata.position,
            "token_count": metadata.token_count,
        }

    @staticmethod
    def _from_chroma_metadata(
        meta: dict[str, Any], document: str, tenant_id: str
    ) -> VectorMetadata:
        return VectorMetadata(
            source_id=meta.get("source_id", ""),
            tenant_id=meta.get("tenant_id", tenant_id),
            content=document,
            position=meta.get("position", -1),
            token_count=meta.get("token_count", 0),
        )
