"""Alert service: the public operations of the alert delivery engine."""

import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ...config.logging import get_logger, log_audit_event
from ...events import AlertCancelledEvent, AlertCreatedEvent, DomainEvent, EventBus
from .batch import BatchProcessor
from .content import (
    default_channels,
    determine_priority,
    format_alert_message,
    generate_alert_message,
    generate_alert_title,
)
from .exceptions import AlertNotFoundError, AlertValidationError, ConcurrencyConflictError
from .models import (
    Alert,
    AlertFilter,
    AlertPage,
    AlertSchedule,
    AlertStatistics,
    AlertStatus,
    BatchConfig,
    DeliveryReport,
    DeliveryResult,
)
from .orchestrator import DeliveryOrchestrator
from .repository import AlertRepository
from .statistics import StatisticsRecorder
from .requests import AlertCreationRequest, AlertPatch
from .validation import parse_request, validate_patch

logger = get_logger(__name__)

OPEN_STATUSES = (AlertStatus.PENDING, AlertStatus.FAILED)
MAX_UPDATE_CONFLICTS = 3


class AlertService:
    """Service for creating, managing and delivering product alerts."""

    def __init__(
        self,
        repository: AlertRepository,
        orchestrator: DeliveryOrchestrator,
        batch_processor: BatchProcessor,
        statistics: StatisticsRecorder,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
        batch_config: Optional[BatchConfig] = None,
        max_alerts_per_user: int = 50,
        max_delivery_attempts: int = 3,
        default_locale: str = "ja",
    ):
        self.repository = repository
        self.orchestrator = orchestrator
        self.batch_processor = batch_processor
        self.statistics = statistics
        self.event_bus = event_bus
        self.clock = clock or datetime.now
        self.batch_config = batch_config or BatchConfig()
        self.max_alerts_per_user = max_alerts_per_user
        self.max_delivery_attempts = max_delivery_attempts
        self.default_locale = default_locale
        self.logger = logger.bind(service="alert_service")

    async def create_alert(
        self, request: Union[AlertCreationRequest, Mapping[str, Any]]
    ) -> Alert:
        """
        Create a pending alert.

        Title and message are generated from the alert type and conditions;
        priority and channels fall back to type-based defaults.

        Raises:
            AlertValidationError: invalid request or the user is at the alert limit
        """
        now = self.clock()
        try:
            request = parse_request(AlertCreationRequest, request, now)
        except AlertValidationError as e:
            self.logger.warning("Alert creation rejected", errors=e.errors)
            raise

        conditions = request.conditions.to_domain()

        await self._check_user_alert_limit(request.user_id)

        alert = Alert(
            user_id=request.user_id,
            product_id=request.product_id,
            type=request.type,
            title=generate_alert_title(request.type),
            message=generate_alert_message(request.type, conditions),
            channels=list(request.channels or default_channels(request.type)),
            priority=request.priority or determine_priority(request.type, conditions),
            conditions=conditions,
            schedule=request.schedule.to_domain() if request.schedule else AlertSchedule(),
            alert_data=dict(request.alert_data),
            created_at=now,
            scheduled_at=now,
            expires_at=request.expires_at,
            max_delivery_attempts=self.max_delivery_attempts,
        )
        alert = await self.repository.add(alert)

        self.logger.info(
            "Alert created",
            alert_id=alert.id,
            user_id=alert.user_id,
            product_id=alert.product_id,
            alert_type=alert.type.value,
            priority=alert.priority.value,
        )
        log_audit_event(
            "alert_created", user_id=alert.user_id, alert_id=alert.id, alert_type=alert.type.value
        )
        await self._publish(
            AlertCreatedEvent(
                alert_id=alert.id,
                user_id=alert.user_id,
                product_id=alert.product_id,
                alert_type=alert.type.value,
                channels=[channel.value for channel in alert.channels],
            )
        )
        return alert

    async def _check_user_alert_limit(self, user_id: str) -> None:
        open_alerts = await self.repository.list_alerts(user_id, OPEN_STATUSES)
        active = sum(1 for alert in open_alerts if not alert.is_terminal)
        if active >= self.max_alerts_per_user:
            raise AlertValidationError(
                [f"Maximum number of alerts ({self.max_alerts_per_user}) exceeded"]
            )

    async def update_alert(
        self, alert_id: str, updates: Union[AlertPatch, Mapping[str, Any]]
    ) -> Alert:
        """
        Apply a user patch.

        Only the fields enumerated by ``AlertPatch`` can change; status edits
        must follow the alert state machine. A concurrent write re-reads the
        alert and validates the patch again.

        Raises:
            AlertNotFoundError: unknown alert id
            AlertValidationError: illegal field, value or status transition
        """
        patch = parse_request(AlertPatch, updates, self.clock())

        for conflict in range(MAX_UPDATE_CONFLICTS):
            alert = await self.get_alert(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)

            now = self.clock()
            validate_patch(alert, patch)
            previous_status = alert.status
            self._apply_patch(alert, patch, now)

            try:
                saved = await self.repository.save(alert)
            except ConcurrencyConflictError:
                self.logger.info(
                    "Alert changed during update, retrying",
                    alert_id=alert_id,
                    conflict=conflict + 1,
                )
                continue

            changed = sorted(patch.changed_fields())
            self.logger.info("Alert updated", alert_id=alert_id, fields=changed)
            log_audit_event("alert_updated", user_id=saved.user_id, alert_id=alert_id, fields=changed)

            if saved.status == AlertStatus.CANCELLED and previous_status != AlertStatus.CANCELLED:
                log_audit_event("alert_cancelled", user_id=saved.user_id, alert_id=alert_id)
                await self._publish(
                    AlertCancelledEvent(
                        alert_id=alert_id,
                        user_id=saved.user_id,
                        previous_status=previous_status.value,
                    )
                )
            return saved

        raise ConcurrencyConflictError(alert_id, alert.version)

    def _apply_patch(self, alert: Alert, patch: AlertPatch, now: datetime) -> None:
        for name, value in patch.changed_fields().items():
            setattr(alert, name, value)

        if patch.channels is not None:
            alert.channels = list(dict.fromkeys(patch.channels))
        if patch.status == AlertStatus.PENDING:
            # Manual re-queue of a failed alert makes it due immediately
            alert.scheduled_at = now
        alert.updated_at = now

    async def delete_alert(self, alert_id: str) -> bool:
        """
        Soft-delete an alert by cancelling it.

        Returns:
            False if the alert does not exist, True once it is cancelled
        """
        alert = await self.get_alert(alert_id)
        if alert is None:
            return False
        if alert.status == AlertStatus.CANCELLED:
            return True

        await self.update_alert(alert_id, AlertPatch(status=AlertStatus.CANCELLED))
        return True

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return await self.repository.get(alert_id)

    async def get_user_alerts(self, alert_filter: AlertFilter) -> AlertPage:
        """List a user's alerts, newest first, one page at a time."""
        statuses = [alert_filter.status] if alert_filter.status else None
        alerts = await self.repository.list_alerts(alert_filter.user_id, statuses)

        if alert_filter.type is not None:
            alerts = [alert for alert in alerts if alert.type == alert_filter.type]
        if alert_filter.priority is not None:
            alerts = [alert for alert in alerts if alert.priority == alert_filter.priority]
        if alert_filter.product_id is not None:
            alerts = [alert for alert in alerts if alert.product_id == alert_filter.product_id]
        if alert_filter.active is not None:
            alerts = [
                alert for alert in alerts if (not alert.is_terminal) == alert_filter.active
            ]

        alerts.sort(key=lambda alert: alert.created_at, reverse=True)
        total = len(alerts)
        limit = max(alert_filter.limit, 1)
        page = max(alert_filter.page, 1)
        start = (page - 1) * limit

        return AlertPage(
            alerts=alerts[start : start + limit],
            total=total,
            page=page,
            total_pages=math.ceil(total / limit),
        )

    def validate_alert_config(
        self, request: Union[AlertCreationRequest, Mapping[str, Any]]
    ) -> Dict[str, Any]:
        """Check a creation request without creating anything."""
        try:
            parse_request(AlertCreationRequest, request, self.clock())
        except AlertValidationError as e:
            return {"valid": False, "errors": e.errors}
        return {"valid": True, "errors": []}

    async def process_alerts(self) -> List[DeliveryResult]:
        """Run one orchestration pass over every due alert."""
        now = self.clock()
        due = await self.repository.list_pending(now)
        if not due:
            self.logger.debug("No alerts due")
            return []

        self.logger.info("Processing due alerts", count=len(due))
        return await self.batch_processor.process_batch(
            [alert.id for alert in due], config=self.batch_config
        )

    async def process_batch_alerts(
        self,
        alert_ids: Sequence[str],
        dry_run: bool = False,
        user_id: Optional[str] = None,
        config: Optional[BatchConfig] = None,
    ) -> List[DeliveryResult]:
        return await self.batch_processor.process_batch(
            alert_ids, config=config or self.batch_config, dry_run=dry_run, user_id=user_id
        )

    async def get_alert_statistics(self, user_id: Optional[str] = None) -> AlertStatistics:
        """Delivery counters plus current alert counts, globally or for one user."""
        stats = self.statistics.get(user_id)
        stats.total_alerts = await self.repository.count_alerts(user_id)
        open_alerts = await self.repository.list_alerts(user_id, OPEN_STATUSES)
        stats.active_alerts = sum(1 for alert in open_alerts if not alert.is_terminal)
        return stats

    async def get_alert_delivery_report(self, alert_id: str) -> DeliveryReport:
        alert = await self.get_alert(alert_id)
        return DeliveryReport(
            alert=alert,
            deliveries=self.statistics.history(alert_id),
            summary=self.statistics.summarize(alert_id),
        )

    def format_alert_message(self, alert: Alert, locale: Optional[str] = None) -> str:
        return format_alert_message(alert, locale or self.default_locale)

    async def _publish(self, event: DomainEvent) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)
