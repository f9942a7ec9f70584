"""Repository classes for database operations using SQLAlchemy ORM."""

from .alerts import SqlAlertRepository, alert_to_values, record_to_alert
from .base import BaseRepository, ThreadedRepository
from .delivery_history import SqlDeliveryHistory
from .in_app import InAppNotificationRepository, InAppStoreTransport

__all__ = [
    "BaseRepository",
    "InAppNotificationRepository",
    "InAppStoreTransport",
    "SqlAlertRepository",
    "SqlDeliveryHistory",
    "ThreadedRepository",
    "alert_to_values",
    "record_to_alert",
]
