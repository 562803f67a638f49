"""Abstract base class for the relational knowledge repository.

Persists :class:`~lorekeeper.models.knowledge.Source` and
:class:`~lorekeeper.models.knowledge.Fragment` records and provides an
atomic transaction scope.  Mapping between rows and entities lives in the
concrete adapter, never in the entities.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TypeVar

from lorekeeper.models.knowledge import Fragment, Source, SourceStatus

T = TypeVar("T")


# Concrete implementation: SQLiteKnowledgeRepository (lorekeeper/providers/repository/)
class IKnowledgeRepository(ABC):
    """Contract for source / fragment persistence."""

    # ── Sources ───────────────────────────────────────────────────────

    @abstractmethod
    async def save_source(self, source: Source) -> Source:
        """Insert or update *source* and return the persisted copy.

        A source without an ``id`` is inserted and receives a new identifier.
        """

    @abstractmethod
    async def find_source_by_id(self, source_id: str) -> Source | None:
        """Return the source (including soft-deleted ones) or ``None``."""

    @abstractmethod
    async def find_sources_by_tenant(
        self, tenant_id: str, include_deleted: bool = False
    ) -> list[Source]:
        """Return the tenant's sources, newest first."""

    @abstractmethod
    async def find_sources_by_status(self, status: SourceStatus) -> list[Source]:
        """Return all sources currently in *status*."""

    @abstractmethod
    async def find_all_sources(self) -> list[Source]:
        """Return every non-deleted source."""

    @abstractmethod
    async def count_sources_by_tenant(self, tenant_id: str) -> int:
        """Return the number of non-deleted sources owned by *tenant_id*."""

    @abstractmethod
    async def soft_delete_source(self, source_id: str) -> bool:
        """Mark the source DELETED.

        Returns ``False`` if the source does not exist or is already deleted.
        """

    @abstractmethod
    async def delete_source(self, source_id: str) -> bool:
        """Permanently remove the source and its fragments."""

    # ── Fragments ─────────────────────────────────────────────────────

    @abstractmethod
    async def save_fragments(self, fragments: list[Fragment]) -> list[Fragment]:
        """Persist a batch of fragments, assigning ids to new ones.

        The returned list is not guaranteed to preserve input order; callers
        must join on ``position``.
        """

    @abstractmethod
    async def find_fragment_by_id(self, fragment_id: str) -> Fragment | None:
        """Return the fragment or ``None``."""

    @abstractmethod
    async def find_fragments_by_source(self, source_id: str) -> list[Fragment]:
        """Return the source's fragments ordered by ``position``."""

    @abstractmethod
    async def delete_fragments_by_source(self, source_id: str) -> int:
        """Delete the source's fragments and return how many were removed."""

    @abstractmethod
    async def count_fragments_by_source(self, source_id: str) -> int:
        """Return how many fragments the source has."""

    # ── Transactions ──────────────────────────────────────────────────

    @abstractmethod
    async def transaction(self, work: Callable[[], Awaitable[T]]) -> T:
        """Run *work* atomically.

        Repository calls made while *work* runs share one transaction.  It
        commits when *work* returns and rolls back every write when *work*
        raises; the error is then propagated unchanged.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"sqlite_knowledge"``."""
