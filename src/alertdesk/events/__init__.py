"""In-process domain events for the alert delivery engine."""

from .event_bus import EventBus
from .events import (
    AlertCancelledEvent,
    AlertCreatedEvent,
    AlertDeliveryFailedEvent,
    AlertPostponedEvent,
    AlertSentEvent,
    DomainEvent,
)

__all__ = [
    "AlertCancelledEvent",
    "AlertCreatedEvent",
    "AlertDeliveryFailedEvent",
    "AlertPostponedEvent",
    "AlertSentEvent",
    "DomainEvent",
    "EventBus",
]
