"""SQLAlchemy-backed delivery history used by the suppression policy."""

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ...services.alerts.models import Alert, DeliverySnapshot
from ..models import NotificationLogEntry
from .base import ThreadedRepository


class SqlDeliveryHistory(ThreadedRepository):
    """Notification log on the ``notification_log`` table."""

    async def record_delivery(self, alert: Alert, delivered_at: datetime) -> None:
        await self._run("record_delivery", self._record_delivery, alert, delivered_at)

    def _record_delivery(
        self, session: Session, alert: Alert, delivered_at: datetime
    ) -> None:
        session.add(
            NotificationLogEntry(
                alert_id=alert.id,
                user_id=alert.user_id,
                product_id=alert.product_id,
                delivered_at=delivered_at,
            )
        )
        session.commit()

    async def snapshot(self, alert: Alert, now: datetime) -> DeliverySnapshot:
        return await self._run("snapshot", self._snapshot, alert, now)

    def _snapshot(self, session: Session, alert: Alert, now: datetime) -> DeliverySnapshot:
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        hour_ago = now - timedelta(hours=1)
        entry = NotificationLogEntry

        def count(*criteria) -> int:
            return session.scalar(select(func.count()).select_from(entry).where(*criteria)) or 0

        return DeliverySnapshot(
            last_delivery_at=session.scalar(
                select(func.max(entry.delivered_at)).where(
                    entry.user_id == alert.user_id, entry.product_id == alert.product_id
                )
            ),
            alert_deliveries_today=count(
                entry.alert_id == alert.id, entry.delivered_at >= day_start
            ),
            user_deliveries_today=count(
                entry.user_id == alert.user_id, entry.delivered_at >= day_start
            ),
            user_deliveries_last_hour=count(
                entry.user_id == alert.user_id,
                entry.delivered_at >= max(day_start, hour_ago),
            ),
        )
