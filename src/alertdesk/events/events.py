"""Domain events emitted by the alert delivery engine."""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4


def _serialize(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


@dataclass
class DomainEvent:
    """Envelope shared by every alert lifecycle event."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    event_version: str = "1.0"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Flatten envelope and payload fields into a JSON-ready dict."""
        data: Dict[str, Any] = {"event_type": type(self).__name__}
        for f in fields(self):
            data[f.name] = _serialize(getattr(self, f.name))
        return data


@dataclass
class AlertCreatedEvent(DomainEvent):
    """An alert was created in pending state."""

    alert_id: str = ""
    user_id: str = ""
    product_id: str = ""
    alert_type: str = ""
    channels: List[str] = field(default_factory=list)


@dataclass
class AlertSentEvent(DomainEvent):
    """Every requested channel accepted the alert."""

    alert_id: str = ""
    user_id: str = ""
    product_id: str = ""
    alert_type: str = ""
    notification_channels: List[str] = field(default_factory=list)
    delivery_results: List[Dict[str, Any]] = field(default_factory=list)
    delivery_attempts: int = 0


@dataclass
class AlertDeliveryFailedEvent(DomainEvent):
    """At least one channel failed during an orchestration pass."""

    alert_id: str = ""
    user_id: str = ""
    failed_channels: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    delivery_attempts: int = 0
    exhausted: bool = False
    next_attempt_at: Optional[datetime] = None


@dataclass
class AlertPostponedEvent(DomainEvent):
    """Suppression policy deferred the alert."""

    alert_id: str = ""
    user_id: str = ""
    reason: str = ""
    retry_after: Optional[datetime] = None


@dataclass
class AlertCancelledEvent(DomainEvent):
    """User cancelled the alert."""

    alert_id: str = ""
    user_id: str = ""
    previous_status: str = ""
