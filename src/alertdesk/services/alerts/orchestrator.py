"""Delivery orchestrator: one orchestration pass over one alert."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Union

from ...config.logging import get_logger, log_error
from ...events import (
    AlertDeliveryFailedEvent,
    AlertPostponedEvent,
    AlertSentEvent,
    DomainEvent,
    EventBus,
)
from .channels import ChannelAdapter
from .exceptions import (
    AlertNotFoundError,
    ConcurrencyConflictError,
    DispatchAborted,
    RepositoryError,
    TerminalDeliveryFailure,
)
from .models import (
    ALERT_CANCELLED,
    NO_ENABLED_CHANNELS,
    Alert,
    AlertStatus,
    DeliveryDestinations,
    DeliveryResult,
    NotificationChannel,
)
from .repository import AlertRepository, DeliveryHistory, PreferencesProvider
from .retry import RetryController
from .statistics import StatisticsRecorder
from .suppression import SuppressionPolicy

logger = get_logger(__name__)

NO_ADAPTER = "no_adapter"


class DeliveryOrchestrator:
    """
    Drive an alert through ``pending -> {sent, failed, cancelled}``.

    A pass reads the alert, resolves effective channels, consults the
    suppression policy, fans out to the channel adapters concurrently, then
    writes the outcome back with an optimistic version check. Passes over the
    same alert id are serialized by an in-process lock; the version check
    covers writers outside this process and user cancellation.
    """

    def __init__(
        self,
        repository: AlertRepository,
        preferences: PreferencesProvider,
        adapters: Mapping[NotificationChannel, ChannelAdapter],
        history: DeliveryHistory,
        policy: Optional[SuppressionPolicy] = None,
        statistics: Optional[StatisticsRecorder] = None,
        retry_controller: Optional[RetryController] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
        retry_enabled: bool = True,
        failed_retry_base_minutes: int = 5,
        failed_retry_max_minutes: int = 1440,
    ):
        self.repository = repository
        self.preferences = preferences
        self.adapters = dict(adapters)
        self.history = history
        self.policy = policy or SuppressionPolicy()
        self.statistics = statistics or StatisticsRecorder()
        self.retry_controller = retry_controller or RetryController()
        self.event_bus = event_bus
        self.clock = clock or datetime.now
        self.retry_enabled = retry_enabled
        self.failed_retry_base_minutes = failed_retry_base_minutes
        self.failed_retry_max_minutes = failed_retry_max_minutes

        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self.logger = logger.bind(service="delivery_orchestrator")

    async def process(
        self,
        alert: Union[Alert, str],
        dry_run: bool = False,
        retry_controller: Optional[RetryController] = None,
    ) -> List[DeliveryResult]:
        """
        Run one orchestration pass.

        Args:
            alert: Alert or alert id; the stored alert is always re-read
            dry_run: Decide everything but skip transport calls and persistence
            retry_controller: Override the default retry controller for this pass

        Returns:
            One result per effective channel, a single postponed result, a
            single ``no_enabled_channels`` failure, or an empty list when the
            alert is already terminal

        Raises:
            AlertNotFoundError: alert id is unknown
            RepositoryError: persistence failed; the pass is abandoned
        """
        alert_id = alert if isinstance(alert, str) else alert.id

        self._lock_users[alert_id] = self._lock_users.get(alert_id, 0) + 1
        lock = self._locks.setdefault(alert_id, asyncio.Lock())
        try:
            async with lock:
                return await self._run_pass(
                    alert_id, dry_run, retry_controller or self.retry_controller
                )
        finally:
            self._lock_users[alert_id] -= 1
            if not self._lock_users[alert_id]:
                del self._lock_users[alert_id]
                del self._locks[alert_id]

    async def _run_pass(
        self, alert_id: str, dry_run: bool, retry_controller: RetryController
    ) -> List[DeliveryResult]:
        now = self.clock()
        alert = await self.repository.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)

        log = self.logger.bind(alert_id=alert.id, user_id=alert.user_id, dry_run=dry_run)

        if alert.status not in (AlertStatus.PENDING, AlertStatus.FAILED) or (
            alert.delivery_attempts >= alert.max_delivery_attempts
        ):
            log.debug("Alert is terminal, skipping", status=alert.status.value)
            return []
        if alert.is_expired(now):
            log.info("Alert expired, skipping", expires_at=alert.expires_at.isoformat())
            return []

        preferences = await self.preferences.get(alert.user_id)
        channels = preferences.effective_channels(alert)

        if not channels:
            log.warning(
                "No enabled channels for alert",
                requested=[channel.value for channel in alert.channels],
            )
            result = self._alert_result(
                alert, error=NO_ENABLED_CHANNELS, dry_run=dry_run
            )
            if not dry_run:
                saved = await self._commit(alert, self._mark_unroutable(now))
                self.statistics.record([result])
                if saved is not None and saved.status == AlertStatus.FAILED:
                    await self._publish(
                        AlertDeliveryFailedEvent(
                            alert_id=alert.id,
                            user_id=alert.user_id,
                            errors=[NO_ENABLED_CHANNELS],
                            delivery_attempts=saved.delivery_attempts,
                            next_attempt_at=saved.scheduled_at,
                        )
                    )
            return [result]

        snapshot = await self.history.snapshot(alert, now)
        decision = self.policy.should_suppress(alert, now, snapshot, preferences)
        if decision.suppressed:
            log.info(
                "Alert postponed",
                reason=decision.reason.value,
                retry_after=decision.retry_after.isoformat() if decision.retry_after else None,
            )
            result = self._alert_result(
                alert,
                postponed=True,
                suppression_reason=decision.reason,
                retry_after=decision.retry_after,
                dry_run=dry_run,
            )
            if not dry_run:
                self.statistics.record([result])
                await self._publish(
                    AlertPostponedEvent(
                        alert_id=alert.id,
                        user_id=alert.user_id,
                        reason=decision.reason.value,
                        retry_after=decision.retry_after,
                    )
                )
            return [result]

        results = await self._dispatch_all(
            alert, channels, preferences.destinations, dry_run, retry_controller
        )

        all_succeeded = all(result.success for result in results)
        log.info(
            "Channel dispatch finished",
            channels=[channel.value for channel in channels],
            succeeded=sum(1 for result in results if result.success),
            failed=sum(1 for result in results if not result.success),
        )

        if dry_run:
            return results

        if any(result.success for result in results):
            await self.history.record_delivery(alert, now)

        if any(result.error == ALERT_CANCELLED for result in results):
            current = await self.repository.get(alert.id)
            if current is None or current.status == AlertStatus.CANCELLED:
                log.info("Alert cancelled during dispatch, outcome discarded")
                self.statistics.record(results)
                return results

        saved = await self._commit(alert, self._mark_outcome(now, all_succeeded))
        # Only passes that reached the repository are counted here
        self.statistics.record(results)
        if saved is None:
            return results

        if saved.status == AlertStatus.SENT:
            log.info("Alert sent", delivery_attempts=saved.delivery_attempts)
            await self._publish(
                AlertSentEvent(
                    alert_id=saved.id,
                    user_id=saved.user_id,
                    product_id=saved.product_id,
                    alert_type=saved.type.value,
                    notification_channels=[channel.value for channel in channels],
                    delivery_results=[result.to_dict() for result in results],
                    delivery_attempts=saved.delivery_attempts,
                )
            )
        elif saved.status == AlertStatus.FAILED:
            exhausted = saved.delivery_attempts >= saved.max_delivery_attempts
            log.warning(
                "Alert delivery failed",
                delivery_attempts=saved.delivery_attempts,
                exhausted=exhausted,
                next_attempt_at=(
                    saved.scheduled_at.isoformat() if saved.scheduled_at else None
                ),
            )
            failed = [result for result in results if not result.success]
            await self._publish(
                AlertDeliveryFailedEvent(
                    alert_id=saved.id,
                    user_id=saved.user_id,
                    failed_channels=[result.channel.value for result in failed],
                    errors=[result.error or "unknown" for result in failed],
                    delivery_attempts=saved.delivery_attempts,
                    exhausted=exhausted,
                    next_attempt_at=saved.scheduled_at,
                )
            )

        return results

    async def _dispatch_all(
        self,
        alert: Alert,
        channels: List[NotificationChannel],
        destinations: DeliveryDestinations,
        dry_run: bool,
        retry_controller: RetryController,
    ) -> List[DeliveryResult]:
        outcomes = await asyncio.gather(
            *(
                self._dispatch(alert, channel, destinations, dry_run, retry_controller)
                for channel in channels
            ),
            return_exceptions=True,
        )

        results = []
        for channel, outcome in zip(channels, outcomes):
            if isinstance(outcome, RepositoryError):
                raise outcome
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log_error(outcome, alert_id=alert.id, channel=channel.value)
                outcome = DeliveryResult(
                    alert_id=alert.id,
                    channel=channel,
                    success=False,
                    error=str(outcome) or type(outcome).__name__,
                    dry_run=dry_run,
                    user_id=alert.user_id,
                    alert_type=alert.type,
                )
            results.append(outcome)
        return results

    async def _dispatch(
        self,
        alert: Alert,
        channel: NotificationChannel,
        destinations: DeliveryDestinations,
        dry_run: bool,
        retry_controller: RetryController,
    ) -> DeliveryResult:
        if await self._is_cancelled(alert.id):
            self.logger.info(
                "Alert cancelled before dispatch", alert_id=alert.id, channel=channel.value
            )
            return self._channel_failure(alert, channel, ALERT_CANCELLED, dry_run)

        adapter = self.adapters.get(channel)
        if adapter is None:
            self.logger.error(
                "No adapter registered for channel", alert_id=alert.id, channel=channel.value
            )
            return self._channel_failure(alert, channel, NO_ADAPTER, dry_run)

        if not self.retry_enabled:
            return await adapter.deliver(alert, destinations, dry_run=dry_run)

        try:
            return await retry_controller.with_retry(
                adapter,
                alert,
                destinations,
                dry_run=dry_run,
                should_abort=lambda: self._is_cancelled(alert.id),
            )
        except DispatchAborted as e:
            result = self._channel_failure(alert, channel, ALERT_CANCELLED, dry_run)
            result.metadata["attempts"] = e.attempts
            return result
        except TerminalDeliveryFailure as e:
            result = self._channel_failure(alert, channel, e.last_error, dry_run)
            result.metadata["attempts"] = e.attempts
            return result

    async def _is_cancelled(self, alert_id: str) -> bool:
        current = await self.repository.get(alert_id)
        return current is None or current.status == AlertStatus.CANCELLED

    async def _commit(
        self, alert: Alert, apply: Callable[[Alert], None]
    ) -> Optional[Alert]:
        """
        Apply a state change and save it.

        On a version conflict the alert is re-read once. The change is
        re-applied only if the stored alert is still open; a cancelled, sent
        or exhausted alert is left untouched and None is returned.
        """
        apply(alert)
        try:
            return await self.repository.save(alert)
        except ConcurrencyConflictError:
            current = await self.repository.get(alert.id)
            if current is None or current.is_terminal:
                self.logger.info(
                    "Alert changed during pass, outcome not written",
                    alert_id=alert.id,
                    status=current.status.value if current else None,
                )
                return None

            self.logger.info("Version conflict, re-applying outcome", alert_id=alert.id)
            apply(current)
            return await self.repository.save(current)

    def _mark_outcome(self, now: datetime, all_succeeded: bool) -> Callable[[Alert], None]:
        def apply(alert: Alert) -> None:
            alert.delivery_attempts = min(
                alert.delivery_attempts + 1, alert.max_delivery_attempts
            )
            alert.last_delivery_attempt = now
            alert.updated_at = now
            if all_succeeded:
                alert.status = AlertStatus.SENT
                alert.sent_at = now
                alert.scheduled_at = None
            else:
                alert.status = AlertStatus.FAILED
                alert.sent_at = None
                alert.scheduled_at = self.next_retry_at(now, alert.delivery_attempts)

        return apply

    def _mark_unroutable(self, now: datetime) -> Callable[[Alert], None]:
        def apply(alert: Alert) -> None:
            alert.status = AlertStatus.FAILED
            alert.sent_at = None
            alert.updated_at = now
            alert.scheduled_at = self.next_retry_at(now, alert.delivery_attempts)

        return apply

    def next_retry_at(self, now: datetime, attempts: int) -> datetime:
        """When a failed alert becomes due again: base * 2**(attempts-1), capped."""
        minutes = self.failed_retry_base_minutes * (2 ** max(attempts - 1, 0))
        return now + timedelta(minutes=min(minutes, self.failed_retry_max_minutes))

    def _alert_result(self, alert: Alert, **kwargs) -> DeliveryResult:
        return DeliveryResult(
            alert_id=alert.id,
            channel=None,
            success=False,
            user_id=alert.user_id,
            alert_type=alert.type,
            **kwargs,
        )

    def _channel_failure(
        self,
        alert: Alert,
        channel: NotificationChannel,
        error: Optional[str],
        dry_run: bool,
    ) -> DeliveryResult:
        return DeliveryResult(
            alert_id=alert.id,
            channel=channel,
            success=False,
            error=error,
            dry_run=dry_run,
            user_id=alert.user_id,
            alert_type=alert.type,
            metadata={"delivery_time_ms": 0},
        )

    async def _publish(self, event: DomainEvent) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)
