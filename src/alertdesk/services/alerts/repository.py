"""Collaborator interfaces and in-memory implementations.

The engine talks to storage through three narrow contracts:

* ``AlertRepository`` persists alerts with optimistic versioning. ``save``
  raises ``ConcurrencyConflictError`` when the stored version moved on since
  the alert was read; that check is what keeps two orchestration passes from
  both owning the same status transition.
* ``PreferencesProvider`` resolves a user's notification preferences.
* ``DeliveryHistory`` records successful notifications and answers the
  cooldown/cap questions the suppression policy asks.

The in-memory classes keep deep copies so callers can never mutate stored
state without going through ``save``.
"""

import asyncio
import copy
import dataclasses
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from ...config.logging import get_logger
from .exceptions import ConcurrencyConflictError
from .models import (
    Alert,
    AlertStatus,
    DeliverySnapshot,
    NotificationPreferences,
)

logger = get_logger(__name__)


class AlertRepository(Protocol):
    """Durable alert storage."""

    async def add(self, alert: Alert) -> Alert: ...

    async def get(self, alert_id: str) -> Optional[Alert]: ...

    async def save(self, alert: Alert) -> Alert: ...

    async def list_pending(self, now: datetime) -> List[Alert]: ...

    async def list_alerts(
        self, user_id: Optional[str] = None, statuses: Optional[Iterable[AlertStatus]] = None
    ) -> List[Alert]: ...

    async def count_alerts(
        self, user_id: Optional[str] = None, statuses: Optional[Iterable[AlertStatus]] = None
    ) -> int: ...


class PreferencesProvider(Protocol):
    """Read-only access to user notification preferences."""

    async def get(self, user_id: str) -> NotificationPreferences: ...


class DeliveryHistory(Protocol):
    """Successful notification log used for cooldown and cap decisions."""

    async def record_delivery(self, alert: Alert, delivered_at: datetime) -> None: ...

    async def snapshot(self, alert: Alert, now: datetime) -> DeliverySnapshot: ...


class InMemoryAlertRepository:
    """Alert repository backed by a dict, for tests and embedded use."""

    def __init__(self, alerts: Optional[Iterable[Alert]] = None):
        self._alerts: Dict[str, Alert] = {}
        for alert in alerts or []:
            self._alerts[alert.id] = copy.deepcopy(alert)

    async def add(self, alert: Alert) -> Alert:
        self._alerts[alert.id] = copy.deepcopy(alert)
        return copy.deepcopy(alert)

    async def get(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    async def save(self, alert: Alert) -> Alert:
        stored = self._alerts.get(alert.id)
        if stored is not None and stored.version != alert.version:
            raise ConcurrencyConflictError(alert.id, alert.version)

        saved = copy.deepcopy(alert)
        saved.version = alert.version + 1
        self._alerts[alert.id] = saved
        alert.version = saved.version
        return copy.deepcopy(saved)

    async def list_pending(self, now: datetime) -> List[Alert]:
        due = [alert for alert in self._alerts.values() if alert.is_due(now)]
        due.sort(key=lambda alert: alert.scheduled_at or alert.created_at)
        return [copy.deepcopy(alert) for alert in due]

    async def list_alerts(
        self, user_id: Optional[str] = None, statuses: Optional[Iterable[AlertStatus]] = None
    ) -> List[Alert]:
        wanted = set(statuses) if statuses is not None else None
        return [
            copy.deepcopy(alert)
            for alert in self._alerts.values()
            if (user_id is None or alert.user_id == user_id)
            and (wanted is None or alert.status in wanted)
        ]

    async def count_alerts(
        self, user_id: Optional[str] = None, statuses: Optional[Iterable[AlertStatus]] = None
    ) -> int:
        return len(await self.list_alerts(user_id, statuses))


class InMemoryPreferencesProvider:
    """Preferences lookup from a dict, with a default for unknown users."""

    def __init__(
        self,
        preferences: Optional[Iterable[NotificationPreferences]] = None,
        default: Optional[NotificationPreferences] = None,
    ):
        self._preferences = {prefs.user_id: prefs for prefs in preferences or []}
        self._default = default

    def set(self, preferences: NotificationPreferences) -> None:
        self._preferences[preferences.user_id] = preferences

    async def get(self, user_id: str) -> NotificationPreferences:
        if user_id in self._preferences:
            return self._preferences[user_id]
        if self._default is not None:
            return dataclasses.replace(self._default, user_id=user_id)
        return NotificationPreferences(user_id=user_id)


class CachingPreferencesProvider:
    """Read-through TTL cache in front of another preferences provider."""

    def __init__(self, inner: PreferencesProvider, ttl_seconds: int = 300, clock=None):
        self._inner = inner
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or datetime.now
        self._cache: Dict[str, Tuple[datetime, NotificationPreferences]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, user_id: str) -> NotificationPreferences:
        cached = self._cache.get(user_id)
        if cached and self._clock() - cached[0] < self._ttl:
            return cached[1]

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            cached = self._cache.get(user_id)
            if cached and self._clock() - cached[0] < self._ttl:
                return cached[1]

            preferences = await self._inner.get(user_id)
            self._cache[user_id] = (self._clock(), preferences)
            self._locks.pop(user_id, None)
            logger.debug("Preferences cached", user_id=user_id)
            return preferences

    def invalidate(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)


class InMemoryDeliveryHistory:
    """Delivery log held in a list."""

    def __init__(self):
        self._entries: List[Tuple[str, str, str, datetime]] = []

    async def record_delivery(self, alert: Alert, delivered_at: datetime) -> None:
        self._entries.append((alert.id, alert.user_id, alert.product_id, delivered_at))

    async def snapshot(self, alert: Alert, now: datetime) -> DeliverySnapshot:
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        hour_ago = now - timedelta(hours=1)
        snapshot = DeliverySnapshot()

        for alert_id, user_id, product_id, delivered_at in self._entries:
            if user_id == alert.user_id and product_id == alert.product_id:
                if (
                    snapshot.last_delivery_at is None
                    or delivered_at > snapshot.last_delivery_at
                ):
                    snapshot.last_delivery_at = delivered_at
            if delivered_at < day_start:
                continue
            if alert_id == alert.id:
                snapshot.alert_deliveries_today += 1
            if user_id == alert.user_id:
                snapshot.user_deliveries_today += 1
                if delivered_at >= hour_ago:
                    snapshot.user_deliveries_last_hour += 1

        return snapshot
