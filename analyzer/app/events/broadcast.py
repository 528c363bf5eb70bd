from __future__ import annotations

import logging
from typing import List, Optional

from analyzer.app.events.memory_emitter import MemoryQueueEventEmitter
from analyzer.app.events.models import ProgressEvent

logger = logging.getLogger("analyzer.events")


class BroadcastEventEmitter:
    """
    Fan-out emitter backing the subscription-style progress feed.

    Every Track emits into a single broadcaster; each subscriber gets its
    own ordered queue. A failing subscriber is dropped and never breaks
    the emitting Track.
    """

    def __init__(self) -> None:
        self._subscribers: List[MemoryQueueEventEmitter] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        *,
        close_on_terminal_for: Optional[str] = None,
    ) -> MemoryQueueEventEmitter:
        subscriber = MemoryQueueEventEmitter(
            close_on_terminal_for=close_on_terminal_for,
        )
        self._subscribers.append(subscriber)
        return subscriber

    async def unsubscribe(self, subscriber: MemoryQueueEventEmitter) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
        await subscriber.close()

    async def emit(self, event: ProgressEvent) -> None:
        for subscriber in list(self._subscribers):
            if subscriber.closed:
                self._subscribers.remove(subscriber)
                continue

            try:
                await subscriber.emit(event)
            except Exception:
                logger.exception(
                    "progress_subscriber_failed",
                    extra={"document_id": event.document_id},
                )
                self._subscribers.remove(subscriber)

    async def close(self) -> None:
        for subscriber in list(self._subscribers):
            await subscriber.close()
        self._subscribers.clear()
