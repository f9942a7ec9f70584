"""SQLAlchemy-backed alert repository."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ...config.logging import get_logger
from ...services.alerts.exceptions import ConcurrencyConflictError
from ...services.alerts.models import (
    Alert,
    AlertConditions,
    AlertPriority,
    AlertSchedule,
    AlertStatus,
    AlertType,
    NotificationChannel,
    QuietHours,
    StockStatus,
)
from ..models import AlertRecord
from .base import ThreadedRepository

logger = get_logger(__name__)


def conditions_to_json(conditions: AlertConditions) -> Dict[str, Any]:
    return {
        "target_price": conditions.target_price,
        "percentage_drop": conditions.percentage_drop,
        "historical_low": conditions.historical_low,
        "platforms": conditions.platforms,
        "min_rating": conditions.min_rating,
        "stock_status": conditions.stock_status.value if conditions.stock_status else None,
    }


def conditions_from_json(data: Optional[Dict[str, Any]]) -> AlertConditions:
    data = dict(data or {})
    stock_status = data.pop("stock_status", None)
    return AlertConditions(
        stock_status=StockStatus(stock_status) if stock_status else None, **data
    )


def schedule_to_json(schedule: AlertSchedule) -> Dict[str, Any]:
    quiet_hours = schedule.quiet_hours
    return {
        "active": schedule.active,
        "quiet_hours": (
            {"start": quiet_hours.start, "end": quiet_hours.end} if quiet_hours else None
        ),
        "max_alerts_per_day": schedule.max_alerts_per_day,
        "cooldown_minutes": schedule.cooldown_minutes,
    }


def schedule_from_json(data: Optional[Dict[str, Any]]) -> AlertSchedule:
    data = dict(data or {})
    quiet_hours = data.pop("quiet_hours", None)
    return AlertSchedule(
        quiet_hours=QuietHours(**quiet_hours) if quiet_hours else None, **data
    )


def alert_to_values(alert: Alert) -> Dict[str, Any]:
    """Column values for an alert, excluding ``id`` and ``version``."""
    return {
        "user_id": alert.user_id,
        "product_id": alert.product_id,
        "type": alert.type.value,
        "priority": alert.priority.value,
        "status": alert.status.value,
        "title": alert.title,
        "message": alert.message,
        "channels": [channel.value for channel in alert.channels],
        "conditions": conditions_to_json(alert.conditions),
        "schedule": schedule_to_json(alert.schedule),
        "alert_data": alert.alert_data,
        "created_at": alert.created_at,
        "scheduled_at": alert.scheduled_at,
        "sent_at": alert.sent_at,
        "updated_at": alert.updated_at,
        "expires_at": alert.expires_at,
        "last_delivery_attempt": alert.last_delivery_attempt,
        "delivery_attempts": alert.delivery_attempts,
        "max_delivery_attempts": alert.max_delivery_attempts,
    }


def record_to_alert(record: AlertRecord) -> Alert:
    return Alert(
        id=record.id,
        user_id=record.user_id,
        product_id=record.product_id,
        type=AlertType(record.type),
        priority=AlertPriority(record.priority),
        status=AlertStatus(record.status),
        title=record.title,
        message=record.message,
        channels=[NotificationChannel(channel) for channel in record.channels],
        conditions=conditions_from_json(record.conditions),
        schedule=schedule_from_json(record.schedule),
        alert_data=dict(record.alert_data or {}),
        created_at=record.created_at,
        scheduled_at=record.scheduled_at,
        sent_at=record.sent_at,
        updated_at=record.updated_at,
        expires_at=record.expires_at,
        last_delivery_attempt=record.last_delivery_attempt,
        delivery_attempts=record.delivery_attempts,
        max_delivery_attempts=record.max_delivery_attempts,
        version=record.version,
    )


class SqlAlertRepository(ThreadedRepository):
    """Alert repository with optimistic versioning on the ``alerts`` table."""

    async def add(self, alert: Alert) -> Alert:
        return await self._run("add", self._add, alert)

    def _add(self, session: Session, alert: Alert) -> Alert:
        record = AlertRecord(id=alert.id, version=alert.version, **alert_to_values(alert))
        session.add(record)
        session.commit()
        logger.debug("Alert stored", alert_id=alert.id)
        return record_to_alert(record)

    async def get(self, alert_id: str) -> Optional[Alert]:
        return await self._run("get", self._get, alert_id)

    def _get(self, session: Session, alert_id: str) -> Optional[Alert]:
        record = session.get(AlertRecord, alert_id)
        return record_to_alert(record) if record else None

    async def save(self, alert: Alert) -> Alert:
        """
        Write the alert if the stored version still matches.

        Raises:
            ConcurrencyConflictError: someone else saved the alert first
        """
        saved = await self._run("save", self._save, alert)
        alert.version = saved.version
        return saved

    def _save(self, session: Session, alert: Alert) -> Alert:
        result = session.execute(
            update(AlertRecord)
            .where(AlertRecord.id == alert.id, AlertRecord.version == alert.version)
            .values(version=alert.version + 1, **alert_to_values(alert))
        )
        if result.rowcount == 0:
            if session.get(AlertRecord, alert.id) is not None:
                session.rollback()
                raise ConcurrencyConflictError(alert.id, alert.version)
            session.add(
                AlertRecord(id=alert.id, version=alert.version + 1, **alert_to_values(alert))
            )
        session.commit()
        return record_to_alert(session.get(AlertRecord, alert.id))

    async def list_pending(self, now: datetime) -> List[Alert]:
        return await self._run("list_pending", self._list_pending, now)

    def _list_pending(self, session: Session, now: datetime) -> List[Alert]:
        records = session.scalars(
            select(AlertRecord)
            .where(
                AlertRecord.status.in_(
                    [AlertStatus.PENDING.value, AlertStatus.FAILED.value]
                ),
                AlertRecord.delivery_attempts < AlertRecord.max_delivery_attempts,
                or_(AlertRecord.scheduled_at.is_(None), AlertRecord.scheduled_at <= now),
                or_(AlertRecord.expires_at.is_(None), AlertRecord.expires_at > now),
            )
            .order_by(AlertRecord.scheduled_at, AlertRecord.created_at)
        ).all()
        return [record_to_alert(record) for record in records]

    async def list_alerts(
        self, user_id: Optional[str] = None, statuses: Optional[Iterable[AlertStatus]] = None
    ) -> List[Alert]:
        return await self._run("list_alerts", self._list_alerts, user_id, statuses)

    def _list_alerts(
        self,
        session: Session,
        user_id: Optional[str],
        statuses: Optional[Iterable[AlertStatus]],
    ) -> List[Alert]:
        query = self._filtered(select(AlertRecord), user_id, statuses)
        records = session.scalars(query.order_by(AlertRecord.created_at)).all()
        return [record_to_alert(record) for record in records]

    async def count_alerts(
        self, user_id: Optional[str] = None, statuses: Optional[Iterable[AlertStatus]] = None
    ) -> int:
        return await self._run("count_alerts", self._count_alerts, user_id, statuses)

    def _count_alerts(
        self,
        session: Session,
        user_id: Optional[str],
        statuses: Optional[Iterable[AlertStatus]],
    ) -> int:
        query = self._filtered(
            select(func.count()).select_from(AlertRecord), user_id, statuses
        )
        return session.scalar(query) or 0

    @staticmethod
    def _filtered(query, user_id, statuses):
        if user_id is not None:
            query = query.where(AlertRecord.user_id == user_id)
        if statuses is not None:
            query = query.where(AlertRecord.status.in_([status.value for status in statuses]))
        return query
