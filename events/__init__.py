from .bus import EventBus, QueuedEvent
from .types import EventName, EventPayload, EventHandler, payload_id

__all__ = [
    "EventBus", "QueuedEvent", "EventName", "EventPayload", "EventHandler",
    "payload_id",
]
