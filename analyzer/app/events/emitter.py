from __future__ import annotations

from typing import Protocol

from analyzer.app.events.models import ProgressEvent


class ProgressEventEmitter(Protocol):
    """
    Interface for broadcasting Track progress.

    Implementations must be:
    - non-blocking (or minimally blocking)
    - fail-safe (emission failures must not crash a Track)
    - observational only
    """

    async def emit(self, event: ProgressEvent) -> None:
        ...

