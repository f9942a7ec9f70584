"""Data models for the alert lifecycle and notification delivery engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


class AlertType(Enum):
    """Product conditions a user can subscribe to."""

    PRICE_DROP = "price_drop"
    HISTORICAL_LOW = "historical_low"
    STOCK_AVAILABLE = "stock_available"
    BACK_IN_STOCK = "back_in_stock"
    PRICE_TARGET = "price_target"


class AlertPriority(Enum):
    """Alert priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AlertStatus(Enum):
    """Alert lifecycle states."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationChannel(Enum):
    """Available notification channels."""

    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"


class StockStatus(Enum):
    """Stock status filter for availability alerts."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    BACK_IN_STOCK = "back_in_stock"


class SuppressionReason(Enum):
    """Why a dispatch was postponed."""

    INACTIVE = "inactive"
    QUIET_HOURS = "quiet_hours"
    COOLDOWN = "cooldown"
    DAILY_CAP = "daily_cap"
    HOURLY_CAP = "hourly_cap"


# Error codes carried by DeliveryResult.error for engine-level outcomes
NO_ENABLED_CHANNELS = "no_enabled_channels"
NO_DESTINATION = "no_destination"
ALERT_CANCELLED = "alert_cancelled"
TIMEOUT = "timeout"
REPOSITORY_ERROR = "repository_error"


@dataclass
class QuietHours:
    """Daily window (HH:MM, server time) during which nothing is dispatched."""

    start: str
    end: str


def hhmm_to_minutes(value: str) -> int:
    """Convert an HH:MM string into minutes after midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


@dataclass
class AlertConditions:
    """Business criteria evaluated by the trigger source, never by this engine."""

    target_price: Optional[float] = None
    percentage_drop: Optional[float] = None
    historical_low: bool = False
    platforms: Optional[List[str]] = None
    min_rating: Optional[float] = None
    stock_status: Optional[StockStatus] = None


@dataclass
class AlertSchedule:
    """Dispatch schedule for an alert."""

    active: bool = True
    quiet_hours: Optional[QuietHours] = None
    max_alerts_per_day: int = 10
    cooldown_minutes: int = 60


@dataclass
class Alert:
    """A user's standing request to be notified about a product."""

    user_id: str
    product_id: str
    type: AlertType
    title: str
    message: str
    channels: List[NotificationChannel]
    id: str = field(default_factory=lambda: str(uuid4()))
    priority: AlertPriority = AlertPriority.MEDIUM
    status: AlertStatus = AlertStatus.PENDING
    conditions: AlertConditions = field(default_factory=AlertConditions)
    schedule: AlertSchedule = field(default_factory=AlertSchedule)
    alert_data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_delivery_attempt: Optional[datetime] = None
    delivery_attempts: int = 0
    max_delivery_attempts: int = 3
    version: int = 0

    def __post_init__(self):
        # Duplicates collapse, first occurrence keeps its position
        self.channels = list(dict.fromkeys(self.channels))

    @property
    def is_terminal(self) -> bool:
        """Sent, cancelled, or failed with no attempts left."""
        if self.status in (AlertStatus.SENT, AlertStatus.CANCELLED):
            return True
        return (
            self.status == AlertStatus.FAILED
            and self.delivery_attempts >= self.max_delivery_attempts
        )

    def can_retry(self) -> bool:
        """Check whether a failed alert may be re-attempted."""
        return (
            self.status == AlertStatus.FAILED
            and self.delivery_attempts < self.max_delivery_attempts
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_due(self, now: datetime) -> bool:
        """Check whether the alert is ready for an orchestration pass."""
        if self.status not in (AlertStatus.PENDING, AlertStatus.FAILED):
            return False
        if self.delivery_attempts >= self.max_delivery_attempts:
            return False
        if self.is_expired(now):
            return False
        return self.scheduled_at is None or self.scheduled_at <= now


@dataclass
class DeliveryDestinations:
    """Where a user can be reached on each channel."""

    push_tokens: List[str] = field(default_factory=list)
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class NotificationPreferences:
    """Per-user notification preferences, read-only for this engine."""

    user_id: str
    enabled_channels: List[NotificationChannel] = field(
        default_factory=lambda: [NotificationChannel.PUSH]
    )
    quiet_hours: Optional[QuietHours] = None
    max_notifications_per_day: int = 50
    max_notifications_per_hour: int = 10
    locale: str = "ja"
    destinations: DeliveryDestinations = field(default_factory=DeliveryDestinations)

    def effective_channels(self, alert: Alert) -> List[NotificationChannel]:
        """Channels requested by the alert that the user also enabled."""
        enabled = set(self.enabled_channels)
        return [channel for channel in alert.channels if channel in enabled]


@dataclass
class DeliveryResult:
    """Outcome of one channel attempt (or one alert-level decision)."""

    alert_id: str
    channel: Optional[NotificationChannel]
    success: bool
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None
    message_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    postponed: bool = False
    suppression_reason: Optional[SuppressionReason] = None
    retry_after: Optional[datetime] = None
    dry_run: bool = False
    user_id: Optional[str] = None
    alert_type: Optional[AlertType] = None

    @property
    def delivery_time_ms(self) -> float:
        return float(self.metadata.get("delivery_time_ms", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "channel": self.channel.value if self.channel else None,
            "success": self.success,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "error": self.error,
            "message_id": self.message_id,
            "postponed": self.postponed,
            "suppression_reason": (
                self.suppression_reason.value if self.suppression_reason else None
            ),
            "retry_after": self.retry_after.isoformat() if self.retry_after else None,
            "dry_run": self.dry_run,
            "metadata": self.metadata,
        }


@dataclass
class SuppressionDecision:
    """Result of the suppression policy."""

    suppressed: bool
    reason: Optional[SuppressionReason] = None
    retry_after: Optional[datetime] = None

    @classmethod
    def allow(cls) -> "SuppressionDecision":
        return cls(suppressed=False)


@dataclass
class DeliverySnapshot:
    """Delivery history facts the suppression policy needs for one alert."""

    last_delivery_at: Optional[datetime] = None
    alert_deliveries_today: int = 0
    user_deliveries_today: int = 0
    user_deliveries_last_hour: int = 0


@dataclass
class BatchConfig:
    """Batch processing configuration."""

    batch_size: int = 100
    max_retries: int = 3
    retry_delay_ms: int = 1000
    timeout_ms: int = 30000

    def __post_init__(self):
        if self.batch_size < 1 or self.batch_size > 1000:
            raise ValueError("batch_size must be between 1 and 1000")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.retry_delay_ms <= 0 or self.timeout_ms <= 0:
            raise ValueError("retry_delay_ms and timeout_ms must be positive")


@dataclass
class AlertFilter:
    """Filter and pagination for listing a user's alerts."""

    user_id: str
    status: Optional[AlertStatus] = None
    type: Optional[AlertType] = None
    priority: Optional[AlertPriority] = None
    product_id: Optional[str] = None
    active: Optional[bool] = None
    page: int = 1
    limit: int = 20


@dataclass
class AlertPage:
    """One page of alerts."""

    alerts: List[Alert]
    total: int
    page: int
    total_pages: int


@dataclass
class ChannelCounts:
    """Per-channel delivery counters."""

    delivered: int = 0
    failed: int = 0


@dataclass
class AlertStatistics:
    """Aggregated delivery outcomes."""

    total_alerts: int = 0
    active_alerts: int = 0
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    postponed: int = 0
    rejected: int = 0
    delivered_today: int = 0
    failed_today: int = 0
    by_type: Dict[str, int] = field(
        default_factory=lambda: {alert_type.value: 0 for alert_type in AlertType}
    )
    by_channel: Dict[str, ChannelCounts] = field(
        default_factory=lambda: {
            channel.value: ChannelCounts() for channel in NotificationChannel
        }
    )
    average_delivery_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_alerts": self.total_alerts,
            "active_alerts": self.active_alerts,
            "total_deliveries": self.total_deliveries,
            "successful_deliveries": self.successful_deliveries,
            "failed_deliveries": self.failed_deliveries,
            "postponed": self.postponed,
            "rejected": self.rejected,
            "delivered_today": self.delivered_today,
            "failed_today": self.failed_today,
            "by_type": dict(self.by_type),
            "by_channel": {
                name: {"delivered": counts.delivered, "failed": counts.failed}
                for name, counts in self.by_channel.items()
            },
            "average_delivery_time_ms": self.average_delivery_time_ms,
        }


@dataclass
class DeliverySummary:
    """Summary block of a delivery report."""

    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    average_delivery_time_ms: float


@dataclass
class DeliveryReport:
    """Delivery history for a single alert."""

    alert: Optional[Alert]
    deliveries: List[DeliveryResult]
    summary: DeliverySummary
