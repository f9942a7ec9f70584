"""In-app notification store and the transport that writes to it."""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, or_
from sqlalchemy.orm import sessionmaker

from ...config.logging import get_logger
from ...services.alerts.transports import TransportReceipt
from ..database import get_session_factory
from ..models import InAppNotificationRecord
from .base import BaseRepository

logger = get_logger(__name__)


class InAppNotificationRepository(BaseRepository):
    """Repository for in-app notification operations."""

    def add_notification(self, payload: Dict[str, Any]) -> InAppNotificationRecord:
        """Store a rendered in-app notification payload."""
        expires_at = payload.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)

        record = InAppNotificationRecord(
            user_id=payload["user_id"],
            alert_id=payload.get("alert_id"),
            title=payload["title"],
            message=payload["message"],
            type=payload.get("type", "info"),
            priority=payload.get("priority", "medium"),
            data=payload.get("data"),
            action_url=payload.get("action_url"),
            action_text=payload.get("action_text"),
            expires_at=expires_at,
        )

        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)

        return record

    def get_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[InAppNotificationRecord]:
        """Get a user's unexpired notifications, newest first."""
        now = now or datetime.now()
        query = self.session.query(InAppNotificationRecord).filter(
            InAppNotificationRecord.user_id == user_id,
            or_(
                InAppNotificationRecord.expires_at.is_(None),
                InAppNotificationRecord.expires_at > now,
            ),
        )
        if unread_only:
            query = query.filter(InAppNotificationRecord.read.is_(False))

        return query.order_by(desc(InAppNotificationRecord.created_at)).all()

    def mark_read(self, notification_id: int) -> bool:
        """Mark a notification as read; returns False if it does not exist."""
        record = self.session.get(InAppNotificationRecord, notification_id)
        if record is None:
            return False

        record.read = True
        self.session.commit()
        return True


class InAppStoreTransport:
    """Transport for the in-app channel: persists the payload for the app to fetch."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def _store(self, payload: Dict[str, Any]) -> int:
        factory = self._session_factory or get_session_factory()
        with factory() as session:
            return InAppNotificationRepository(session).add_notification(payload).id

    async def send(self, payload: Dict[str, Any]) -> TransportReceipt:
        notification_id = await asyncio.to_thread(self._store, payload)
        logger.debug(
            "In-app notification stored",
            notification_id=notification_id,
            user_id=payload.get("user_id"),
        )
        return TransportReceipt(success=True, message_id=f"inapp_{notification_id}")
