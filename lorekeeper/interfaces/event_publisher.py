"""Abstract base class for publishing knowledge-base lifecycle events.

The pipelines publish after a source is completed or soft-deleted; external
notifiers consume the events.  Delivery is fire-and-forget from the
publisher's point of view.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from lorekeeper.models.knowledge import KnowledgeEvent


# Concrete implementation: InMemoryEventPublisher (lorekeeper/providers/events/)
class IEventPublisher(ABC):
    """Contract for the outbound event channel."""

    @abstractmethod
    async def publish(self, event: KnowledgeEvent) -> None:
        """Hand *event* to the channel."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this publisher."""
