from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from analyzer.app.events.emitter import ProgressEventEmitter
from analyzer.app.events.models import ProgressEvent, TERMINAL_EVENT_TYPES


class MemoryQueueEventEmitter(ProgressEventEmitter):
    """
    In-memory async event emitter suitable for SSE streaming.

    Properties:
    - single-consumer
    - non-blocking for the Track execution path
    - deterministic ordering
    - optionally terminates once a given document's Track finishes
    """

    def __init__(self, *, close_on_terminal_for: Optional[str] = None) -> None:
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._closed = False
        self._close_on_terminal_for = close_on_terminal_for

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            return

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # Fail-safe: never let observability break a Track
            return

        if (
            self._close_on_terminal_for is not None
            and event.document_id == self._close_on_terminal_for
            and event.event_type in TERMINAL_EVENT_TYPES
        ):
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """
        Async generator yielding emitted events in order.
        """
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event
