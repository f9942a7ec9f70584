"""Delivery statistics aggregation."""

import copy
import threading
from collections import defaultdict, deque
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional

from ...config.logging import get_logger
from .models import ALERT_CANCELLED, AlertStatistics, DeliveryResult, DeliverySummary

logger = get_logger(__name__)


class StatisticsRecorder:
    """
    Additive delivery counters, global and per user.

    All mutation happens under one lock so concurrent dispatches never lose
    increments. Also keeps a bounded per-alert delivery history for reports.
    """

    def __init__(self, history_limit: int = 100, clock=None):
        self._lock = threading.Lock()
        self._clock = clock or datetime.now
        self._history_limit = history_limit
        self._global = AlertStatistics()
        self._per_user: Dict[str, AlertStatistics] = defaultdict(AlertStatistics)
        self._timed: Dict[Optional[str], int] = defaultdict(int)
        self._history: Dict[str, Deque[DeliveryResult]] = {}
        self._today = self._clock().date()

    def record(self, results: Iterable[DeliveryResult]) -> None:
        """Fold delivery results into the counters. Dry-run results are ignored."""
        results = list(results)
        with self._lock:
            self._roll_day()
            for result in results:
                if result.dry_run:
                    continue
                history = self._history.setdefault(
                    result.alert_id, deque(maxlen=self._history_limit)
                )
                history.append(result)

                targets = [(None, self._global)]
                if result.user_id:
                    targets.append((result.user_id, self._per_user[result.user_id]))
                for key, stats in targets:
                    self._apply(key, stats, result)

        logger.debug("Delivery results recorded", count=len(results))

    def _apply(
        self, key: Optional[str], stats: AlertStatistics, result: DeliveryResult
    ) -> None:
        if result.postponed:
            stats.postponed += 1
            return
        if result.channel is None or result.error == ALERT_CANCELLED:
            # Outcome without a real dispatch (no channels, timeout, cancelled)
            stats.rejected += 1
            return

        stats.total_deliveries += 1
        counts = stats.by_channel[result.channel.value]
        if result.alert_type is not None:
            stats.by_type[result.alert_type.value] += 1

        if result.success:
            stats.successful_deliveries += 1
            stats.delivered_today += 1
            counts.delivered += 1
            self._timed[key] += 1
            # Running mean over successful dispatches
            stats.average_delivery_time_ms += (
                result.delivery_time_ms - stats.average_delivery_time_ms
            ) / self._timed[key]
        else:
            stats.failed_deliveries += 1
            stats.failed_today += 1
            counts.failed += 1

    def _roll_day(self) -> None:
        today = self._clock().date()
        if today == self._today:
            return
        self._today = today
        for stats in [self._global, *self._per_user.values()]:
            stats.delivered_today = 0
            stats.failed_today = 0

    def get(self, user_id: Optional[str] = None) -> AlertStatistics:
        """Return a copy of the counters, for one user or globally."""
        with self._lock:
            self._roll_day()
            if user_id is None:
                source = self._global
            else:
                source = self._per_user.get(user_id) or AlertStatistics()
            return copy.deepcopy(source)

    def history(self, alert_id: str) -> List[DeliveryResult]:
        with self._lock:
            return list(self._history.get(alert_id, ()))

    def summarize(self, alert_id: str) -> DeliverySummary:
        deliveries = [d for d in self.history(alert_id) if not d.postponed]
        successful = sum(1 for d in deliveries if d.success)
        return DeliverySummary(
            total_deliveries=len(deliveries),
            successful_deliveries=successful,
            failed_deliveries=len(deliveries) - successful,
            average_delivery_time_ms=(
                sum(d.delivery_time_ms for d in deliveries) / len(deliveries)
                if deliveries
                else 0.0
            ),
        )
