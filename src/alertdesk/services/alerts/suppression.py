"""Suppression policy: quiet hours, cooldown and delivery caps."""

from datetime import datetime, time, timedelta
from typing import Optional

from .models import (
    Alert,
    DeliverySnapshot,
    NotificationPreferences,
    QuietHours,
    SuppressionDecision,
    SuppressionReason,
    hhmm_to_minutes,
)


def in_quiet_hours(quiet_hours: QuietHours, moment: time) -> bool:
    """
    Check whether a wall-clock time falls inside ``[start, end)``.

    Windows whose start is after their end wrap past midnight.
    """
    start = hhmm_to_minutes(quiet_hours.start)
    end = hhmm_to_minutes(quiet_hours.end)
    current = moment.hour * 60 + moment.minute

    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end


def quiet_hours_end(quiet_hours: QuietHours, now: datetime) -> datetime:
    """Next datetime at which the quiet window closes."""
    end_minutes = hhmm_to_minutes(quiet_hours.end)
    candidate = now.replace(
        hour=end_minutes // 60, minute=end_minutes % 60, second=0, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class SuppressionPolicy:
    """
    Decide whether an alert may be dispatched right now.

    Pure: every input, including delivery history, is handed in by the caller.
    """

    def should_suppress(
        self,
        alert: Alert,
        now: datetime,
        snapshot: Optional[DeliverySnapshot] = None,
        preferences: Optional[NotificationPreferences] = None,
    ) -> SuppressionDecision:
        snapshot = snapshot or DeliverySnapshot()
        schedule = alert.schedule

        if not schedule.active:
            return SuppressionDecision(True, SuppressionReason.INACTIVE)

        for window in (
            schedule.quiet_hours,
            preferences.quiet_hours if preferences else None,
        ):
            if window is not None and in_quiet_hours(window, now.time()):
                return SuppressionDecision(
                    True,
                    SuppressionReason.QUIET_HOURS,
                    retry_after=quiet_hours_end(window, now),
                )

        if snapshot.last_delivery_at is not None and schedule.cooldown_minutes > 0:
            cooldown_ends = snapshot.last_delivery_at + timedelta(
                minutes=schedule.cooldown_minutes
            )
            if now < cooldown_ends:
                return SuppressionDecision(
                    True, SuppressionReason.COOLDOWN, retry_after=cooldown_ends
                )

        next_midnight = datetime.combine(now.date() + timedelta(days=1), time.min)
        if snapshot.alert_deliveries_today >= schedule.max_alerts_per_day:
            return SuppressionDecision(
                True, SuppressionReason.DAILY_CAP, retry_after=next_midnight
            )

        if preferences is not None:
            if snapshot.user_deliveries_today >= preferences.max_notifications_per_day:
                return SuppressionDecision(
                    True, SuppressionReason.DAILY_CAP, retry_after=next_midnight
                )
            if (
                snapshot.user_deliveries_last_hour
                >= preferences.max_notifications_per_hour
            ):
                return SuppressionDecision(
                    True,
                    SuppressionReason.HOURLY_CAP,
                    retry_after=now + timedelta(hours=1),
                )

        return SuppressionDecision.allow()
