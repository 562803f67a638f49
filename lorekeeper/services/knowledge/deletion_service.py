"""Orchestrator for removing a source from the knowledge base.

Order of operations:

1. validate identifiers
2. load the source (``NotFoundError`` / ``AlreadyDeletedError``)
3. count its fragments for the result
4. delete its vectors -- **best effort**
5. one relational transaction: delete fragments, then soft-delete the source

Vectors go first.  A crash part-way through therefore leaves, at worst,
orphaned vectors that reference rows which no longer exist; it never leaves
relational fragments whose vectors are already gone.  Orphaned vectors are
acceptable, orphaned fragments are not, which is also why a vector-store
failure is logged and reported through ``vectors_deleted=False`` instead of
aborting the relational cleanup.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from lorekeeper.models.knowledge import DeletionRequest, DeletionResult, Source, SourceDeleted
from lorekeeper.services.knowledge.validation import validate_deletion_request
from lorekeeper.utils.errors import AlreadyDeletedError, NotFoundError

if TYPE_CHECKING:
    from lorekeeper.interfaces.event_publisher import IEventPublisher
    from lorekeeper.interfaces.knowledge_repository import IKnowledgeRepository
    from lorekeeper.interfaces.vector_store_provider import IVectorStoreProvider

logger = structlog.get_logger(logger_name=__name__)


class DeletionService:
    """Removes a source's vectors, fragments and (softly) the source itself.

    Parameters
    ----------
    vector_store:
        Store holding the source's fragment vectors.
    repository:
        Relational store holding the source and its fragments.
    event_publisher:
        Optional channel notified with :class:`SourceDeleted` on success.
    """

    def __init__(
        self,
        vector_store: IVectorStoreProvider,
        repository: IKnowledgeRepository,
        event_publisher: IEventPublisher | None = None,
    ) -> None:
        self._vector_store = vector_store
        self._repository = repository
        self._event_publisher = event_publisher

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def delete(self, request: DeletionRequest) -> DeletionResult:
        """Delete one source.

        Raises
        ------
        ValidationError
            Malformed source or tenant id.
        NotFoundError
            No such source for this tenant.
        AlreadyDeletedError
            The source was already soft-deleted.
        RepositoryError
            The relational transaction failed; all its writes were rolled back.
        """
        validate_deletion_request(request)

        source = await self._repository.find_source_by_id(request.source_id)
        # A source owned by another tenant is reported as missing.
        if source is None or not source.belongs_to_tenant(request.tenant_id):
            raise NotFoundError(message=f"Source {request.source_id} not found")
        if source.is_deleted:
            raise AlreadyDeletedError(message=f"Source {request.source_id} is already deleted")

        source_id = request.source_id
        fragment_count = await self._repository.count_fragments_by_source(source_id)
        vectors_deleted = await self._delete_vectors(source)

        async def _remove_rows() -> int:
            removed = await self._repository.delete_fragments_by_source(source_id)
            if not await self._repository.soft_delete_source(source_id):
                # Lost a race with a concurrent deletion; roll back.
                raise AlreadyDeletedError(message=f"Source {source_id} is already deleted")
            return removed

        removed = await self._repository.transaction(_remove_rows)

        logger.info(
            "source_deleted",
            source_id=source_id,
            tenant_id=request.tenant_id,
            fragments_deleted=fragment_count,
            fragments_removed=removed,
            vectors_deleted=vectors_deleted,
        )

        await self._publish(
            SourceDeleted(
                source_id=source_id,
                tenant_id=request.tenant_id,
                fragments_deleted=fragment_count,
                vectors_deleted=vectors_deleted,
            )
        )

        return DeletionResult(
            source_id=source_id,
            fragments_deleted=fragment_count,
            vectors_deleted=vectors_deleted,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _delete_vectors(self, source: Source) -> bool:
        try:
            removed = await self._vector_store.delete_by_source(source.id or "", source.tenant_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "vector_delete_failed",
                source_id=source.id,
                tenant_id=source.tenant_id,
                vector_store=self._vector_store.get_provider_name(),
                error=str(exc),
            )
            return False
        logger.debug("vectors_deleted", source_id=source.id, count=removed)
        return True

    async def _publish(self, event: SourceDeleted) -> None:
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
