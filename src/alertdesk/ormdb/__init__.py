"""Database module for SQLAlchemy ORM integration."""

from .database import (
    Base,
    check_database_health,
    create_engine_from_url,
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    get_session_sync,
)
from .models import AlertRecord, InAppNotificationRecord, NotificationLogEntry
from .repositories import (
    InAppNotificationRepository,
    InAppStoreTransport,
    SqlAlertRepository,
    SqlDeliveryHistory,
)

__all__ = [
    # Database components
    "Base",
    "check_database_health",
    "create_engine_from_url",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session_factory",
    "get_session_sync",
    # Models
    "AlertRecord",
    "InAppNotificationRecord",
    "NotificationLogEntry",
    # Repositories
    "InAppNotificationRepository",
    "InAppStoreTransport",
    "SqlAlertRepository",
    "SqlDeliveryHistory",
]
