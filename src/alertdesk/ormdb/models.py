"""SQLAlchemy ORM models for alerts, the notification log and in-app notifications."""

import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.types import JSON

from .database import Base


class AlertRecord(Base):
    """Persisted alert. ``version`` backs the optimistic concurrency check."""

    __tablename__ = "alerts"

    id = Column(String(36), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    priority = Column(String, nullable=False, default="medium")
    status = Column(String, nullable=False, default="pending", index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    channels = Column(JSON, nullable=False)
    conditions = Column(JSON, nullable=False)
    schedule = Column(JSON, nullable=False)
    alert_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    scheduled_at = Column(DateTime, nullable=True, index=True)
    sent_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    last_delivery_attempt = Column(DateTime, nullable=True)
    delivery_attempts = Column(Integer, default=0, nullable=False)
    max_delivery_attempts = Column(Integer, default=3, nullable=False)
    version = Column(Integer, default=0, nullable=False)

    def __repr__(self):
        return (
            f"<AlertRecord(id='{self.id}', user_id='{self.user_id}', "
            f"status='{self.status}', version={self.version})>"
        )


class NotificationLogEntry(Base):
    """One successful alert notification, used for cooldown and cap lookups."""

    __tablename__ = "notification_log"
    __table_args__ = (
        Index("ix_notification_log_user_product", "user_id", "product_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    alert_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    product_id = Column(String, nullable=False)
    delivered_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<NotificationLogEntry(alert_id='{self.alert_id}', delivered_at='{self.delivered_at}')>"


class InAppNotificationRecord(Base):
    """Notification stored for the app to fetch."""

    __tablename__ = "in_app_notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    alert_id = Column(String(36), nullable=True, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, default="info", nullable=False)
    priority = Column(String, default="medium", nullable=False)
    data = Column(JSON, nullable=True)
    action_url = Column(String, nullable=True)
    action_text = Column(String, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.now, nullable=False)
    expires_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<InAppNotificationRecord(id={self.id}, user_id='{self.user_id}', read={self.read})>"
