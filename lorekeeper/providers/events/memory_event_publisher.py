"""In-process event publisher with callback-based listener notification.

Implements the Observer pattern:

    IngestionService / DeletionService ──publish()──→ InMemoryEventPublisher
                                                        ├──→ queue (drained by a consumer)
                                                        └──→ listener callbacks

Events are buffered on a bounded ``asyncio.Queue`` for a consumer task and
also handed to every registered listener.  When nobody drains the queue and
it fills up, further events are dropped from the queue with a warning;
listeners still receive them.  Listener errors are caught and logged, so one
broken notifier cannot fail a pipeline or starve the others.  Both sync and
async callbacks are supported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from lorekeeper.interfaces.event_publisher import IEventPublisher
from lorekeeper.models.knowledge import KnowledgeEvent
from lorekeeper.utils.logging import get_logger

DEFAULT_QUEUE_SIZE = 100


class InMemoryEventPublisher(IEventPublisher):
    """Queue-and-callback event channel living inside the process."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        if maxsize <= 0:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self._queue: asyncio.Queue[KnowledgeEvent] = asyncio.Queue(maxsize=maxsize)
        self._listeners: list[Callable] = []
        self._logger: structlog.BoundLogger = get_logger(__name__)
        self.dropped = 0

    # ------------------------------------------------------------------
    # IEventPublisher implementation
    # ------------------------------------------------------------------

    async def publish(self, event: KnowledgeEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            self._logger.warning(
                "event_queue_full",
                event_type=event.event_type,
                source_id=event.source_id,
                maxsize=self._queue.maxsize,
                dropped=self.dropped,
            )
        else:
            self._logger.debug(
                "event_published", event_type=event.event_type, source_id=event.source_id
            )

        for callback in list(self._listeners):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "event_listener_error",
                    event_type=event.event_type,
                    error=str(exc),
                )

    def get_provider_name(self) -> str:
        return "memory_events"

    # ------------------------------------------------------------------
    # Listener registry / consumption
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable) -> None:
        """Register *callback* to receive every published event."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable) -> None:
        """Remove *callback*; unknown callbacks are ignored."""
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def next_event(self) -> KnowledgeEvent:
        """Wait for and return the next buffered event."""
        return await self._queue.get()

    def drain(self) -> list[KnowledgeEvent]:
        """Return every buffered event without waiting."""
        events: list[KnowledgeEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    @property
    def pending(self) -> int:
        return self._queue.qsize()
