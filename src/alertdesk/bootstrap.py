"""Composition root: wires the alert engine from settings and collaborators."""

from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from .config.logging import get_logger
from .config.settings import Settings, get_settings
from .events import EventBus
from .ormdb.repositories import InAppStoreTransport, SqlAlertRepository, SqlDeliveryHistory
from .services.alerts import (
    AlertRepository,
    AlertService,
    BatchConfig,
    BatchProcessor,
    CachingPreferencesProvider,
    DeliveryHistory,
    DeliveryOrchestrator,
    HttpGatewayTransport,
    InMemoryAlertRepository,
    InMemoryDeliveryHistory,
    InMemoryPreferencesProvider,
    LoggingTransport,
    NotificationChannel,
    PreferencesProvider,
    RetryController,
    StatisticsRecorder,
    SuppressionPolicy,
    Transport,
    build_channel_adapters,
)

logger = get_logger(__name__)


def build_transports(
    settings: Settings, in_app: Optional[Transport] = None
) -> Dict[NotificationChannel, Transport]:
    """
    Pick a transport per channel.

    Channels with a configured gateway URL post to it; the rest log only.
    """
    gateways = {
        NotificationChannel.PUSH: settings.push_gateway_url,
        NotificationChannel.EMAIL: settings.email_gateway_url,
        NotificationChannel.SMS: settings.sms_gateway_url,
    }

    transports: Dict[NotificationChannel, Transport] = {}
    for channel, url in gateways.items():
        if url:
            transports[channel] = HttpGatewayTransport(
                channel.value, url, settings.gateway_auth_token
            )
        else:
            transports[channel] = LoggingTransport(channel.value)

    transports[NotificationChannel.IN_APP] = in_app or LoggingTransport(
        NotificationChannel.IN_APP.value
    )

    logger.info(
        "Transports configured",
        transports={
            channel.value: type(transport).__name__
            for channel, transport in transports.items()
        },
    )
    return transports


def build_alert_service(
    settings: Optional[Settings] = None,
    *,
    repository: Optional[AlertRepository] = None,
    preferences: Optional[PreferencesProvider] = None,
    history: Optional[DeliveryHistory] = None,
    transports: Optional[Mapping[NotificationChannel, Transport]] = None,
    event_bus: Optional[EventBus] = None,
    clock: Optional[Callable[[], datetime]] = None,
    retry_sleep=None,
) -> AlertService:
    """
    Build an AlertService with every collaborator passed in explicitly.

    Anything not supplied falls back to an in-memory implementation, or to
    transports derived from settings.
    """
    settings = settings or get_settings()
    clock = clock or datetime.now
    event_bus = event_bus or EventBus("alerts")
    repository = repository or InMemoryAlertRepository()
    history = history or InMemoryDeliveryHistory()
    preferences = CachingPreferencesProvider(
        preferences or InMemoryPreferencesProvider(),
        ttl_seconds=settings.preferences_cache_ttl_seconds,
        clock=clock,
    )

    adapters = build_channel_adapters(
        transports if transports is not None else build_transports(settings),
        timeout_ms=settings.channel_timeout_ms,
        base_url=settings.storefront_base_url,
        email_from=settings.email_from,
        email_reply_to=settings.email_reply_to,
        clock=clock,
    )
    statistics = StatisticsRecorder(
        history_limit=settings.delivery_history_limit, clock=clock
    )

    orchestrator = DeliveryOrchestrator(
        repository=repository,
        preferences=preferences,
        adapters=adapters,
        history=history,
        policy=SuppressionPolicy(),
        statistics=statistics,
        retry_controller=RetryController(
            max_attempts=settings.max_retry_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            sleep=retry_sleep,
        ),
        event_bus=event_bus,
        clock=clock,
        retry_enabled=settings.retry_enabled,
        failed_retry_base_minutes=settings.failed_alert_retry_base_minutes,
        failed_retry_max_minutes=settings.failed_alert_retry_max_minutes,
    )

    batch_config = BatchConfig(
        batch_size=settings.batch_size,
        max_retries=settings.batch_max_retries,
        retry_delay_ms=settings.batch_retry_delay_ms,
        timeout_ms=settings.batch_timeout_ms,
    )

    logger.info(
        "Alert service built",
        repository=type(repository).__name__,
        channels=[channel.value for channel in adapters],
        retry_enabled=settings.retry_enabled,
    )

    return AlertService(
        repository=repository,
        orchestrator=orchestrator,
        batch_processor=BatchProcessor(
            repository, orchestrator, default_config=batch_config, sleep=retry_sleep
        ),
        statistics=statistics,
        event_bus=event_bus,
        clock=clock,
        batch_config=batch_config,
        max_alerts_per_user=settings.max_alerts_per_user,
        max_delivery_attempts=settings.max_delivery_attempts,
        default_locale=settings.default_locale,
    )


def build_sql_alert_service(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[sessionmaker] = None,
    preferences: Optional[PreferencesProvider] = None,
    event_bus: Optional[EventBus] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AlertService:
    """Build an AlertService on the SQLAlchemy repositories."""
    settings = settings or get_settings()
    return build_alert_service(
        settings,
        repository=SqlAlertRepository(session_factory),
        preferences=preferences,
        history=SqlDeliveryHistory(session_factory),
        transports=build_transports(settings, in_app=InAppStoreTransport(session_factory)),
        event_bus=event_bus,
        clock=clock,
    )
