"""Alert lifecycle and multi-channel notification delivery."""

from .batch import BatchProcessor
from .channels import (
    ADAPTER_CLASSES,
    BaseChannelAdapter,
    ChannelAdapter,
    EmailChannelAdapter,
    InAppChannelAdapter,
    PushChannelAdapter,
    SmsChannelAdapter,
    build_channel_adapters,
)
from .exceptions import (
    AlertDeskError,
    AlertNotFoundError,
    AlertValidationError,
    ConcurrencyConflictError,
    DispatchAborted,
    InvalidStatusTransitionError,
    RepositoryError,
    TerminalDeliveryFailure,
    TransportError,
)
from .models import (
    Alert,
    AlertConditions,
    AlertFilter,
    AlertPage,
    AlertPriority,
    AlertSchedule,
    AlertStatistics,
    AlertStatus,
    AlertType,
    BatchConfig,
    DeliveryDestinations,
    DeliveryReport,
    DeliveryResult,
    DeliverySnapshot,
    NotificationChannel,
    NotificationPreferences,
    QuietHours,
    StockStatus,
    SuppressionDecision,
    SuppressionReason,
)
from .orchestrator import DeliveryOrchestrator
from .repository import (
    AlertRepository,
    CachingPreferencesProvider,
    DeliveryHistory,
    InMemoryAlertRepository,
    InMemoryDeliveryHistory,
    InMemoryPreferencesProvider,
    PreferencesProvider,
)
from .requests import (
    AlertCreationRequest,
    AlertPatch,
    ConditionsRequest,
    QuietHoursRequest,
    ScheduleRequest,
)
from .retry import RetryController
from .service import AlertService
from .statistics import StatisticsRecorder
from .suppression import SuppressionPolicy
from .transports import HttpGatewayTransport, LoggingTransport, Transport, TransportReceipt

__all__ = [
    "ADAPTER_CLASSES",
    "Alert",
    "AlertConditions",
    "AlertCreationRequest",
    "AlertDeskError",
    "AlertFilter",
    "AlertNotFoundError",
    "AlertPage",
    "AlertPatch",
    "AlertPriority",
    "AlertRepository",
    "AlertSchedule",
    "AlertService",
    "AlertStatistics",
    "AlertStatus",
    "AlertType",
    "AlertValidationError",
    "BaseChannelAdapter",
    "BatchConfig",
    "BatchProcessor",
    "CachingPreferencesProvider",
    "ChannelAdapter",
    "ConcurrencyConflictError",
    "DispatchAborted",
    "ConditionsRequest",
    "DeliveryDestinations",
    "DeliveryHistory",
    "DeliveryOrchestrator",
    "DeliveryReport",
    "DeliveryResult",
    "DeliverySnapshot",
    "EmailChannelAdapter",
    "HttpGatewayTransport",
    "InAppChannelAdapter",
    "InMemoryAlertRepository",
    "InMemoryDeliveryHistory",
    "InMemoryPreferencesProvider",
    "InvalidStatusTransitionError",
    "LoggingTransport",
    "NotificationChannel",
    "NotificationPreferences",
    "PreferencesProvider",
    "PushChannelAdapter",
    "QuietHours",
    "QuietHoursRequest",
    "RepositoryError",
    "RetryController",
    "ScheduleRequest",
    "SmsChannelAdapter",
    "StatisticsRecorder",
    "StockStatus",
    "SuppressionDecision",
    "SuppressionPolicy",
    "SuppressionReason",
    "TerminalDeliveryFailure",
    "Transport",
    "TransportError",
    "TransportReceipt",
    "build_channel_adapters",
]
