from .models import ProgressEvent, ProgressEventType, TERMINAL_EVENT_TYPES
from .emitter import ProgressEventEmitter
from .memory_emitter import MemoryQueueEventEmitter
from .broadcast import BroadcastEventEmitter

__all__ = [
    "ProgressEvent",
    "ProgressEventType",
    "TERMINAL_EVENT_TYPES",
    "ProgressEventEmitter",
    "MemoryQueueEventEmitter",
    "BroadcastEventEmitter",
]
