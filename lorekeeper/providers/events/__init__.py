"""Event publisher implementations."""

from lorekeeper.providers.events.memory_event_publisher import InMemoryEventPublisher

__all__ = ["InMemoryEventPublisher"]
