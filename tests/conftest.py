"""Shared test configuration and fixtures."""

import os
import sys
import tempfile
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

sys.path.append("src")
from alertdesk.bootstrap import build_alert_service
from alertdesk.config.settings import Settings, get_settings
from alertdesk.events import EventBus
from alertdesk.services.alerts import (
    Alert,
    AlertType,
    DeliveryDestinations,
    InMemoryAlertRepository,
    InMemoryDeliveryHistory,
    InMemoryPreferencesProvider,
    NotificationChannel,
    NotificationPreferences,
    TransportReceipt,
)

FIXED_NOW = datetime(2026, 3, 10, 12, 0)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingTransport:
    """
    Transport double that records payloads.

    ``outcomes`` is consumed one per call; once empty, every call succeeds.
    An outcome may be a bool, a dict, a TransportReceipt or an exception.
    """

    def __init__(self, name: str, outcomes: Optional[List[Any]] = None):
        self.name = name
        self.outcomes = list(outcomes or [])
        self.payloads: List[Dict[str, Any]] = []

    async def send(self, payload: Dict[str, Any]):
        self.payloads.append(payload)
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is True:
            return TransportReceipt(
                success=True, message_id=f"{self.name}_{len(self.payloads)}"
            )
        return outcome

    @property
    def calls(self) -> int:
        return len(self.payloads)


@pytest.fixture
def isolated_db():
    """Create an isolated database for testing."""
    temp_fd, temp_path = tempfile.mkstemp(suffix=".db")
    db_url = f"sqlite:///{temp_path}"

    try:
        engine = create_engine(db_url, connect_args={"check_same_thread": False})
        SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
        )

        from alertdesk.ormdb.database import create_tables

        create_tables(engine)

        yield {
            "engine": engine,
            "session_factory": SessionLocal,
            "db_url": db_url,
            "db_path": temp_path,
        }

        engine.dispose()
    finally:
        os.close(temp_fd)
        os.unlink(temp_path)


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear the settings cache between tests to avoid state pollution."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings with fast retry timings and no file logging."""
    return Settings(
        _env_file=None,
        environment="testing",
        log_file_enabled=False,
        retry_base_delay_ms=100,
        max_retry_attempts=3,
        channel_timeout_ms=1000,
        batch_timeout_ms=5000,
    )


@pytest.fixture
def transports():
    return {
        channel: RecordingTransport(channel.value) for channel in NotificationChannel
    }


@pytest.fixture
def destinations():
    return DeliveryDestinations(
        push_tokens=["token-1", "token-2"],
        email="user@example.com",
        phone="+819012345678",
    )


@pytest.fixture
def preferences(destinations):
    """Preferences for user-1 with every channel enabled."""
    return InMemoryPreferencesProvider(
        [
            NotificationPreferences(
                user_id="user-1",
                enabled_channels=list(NotificationChannel),
                destinations=destinations,
            )
        ]
    )


@pytest.fixture
def make_alert(clock):
    """Factory for pending alerts due now."""

    def factory(**overrides) -> Alert:
        values = {
            "user_id": "user-1",
            "product_id": "product-1",
            "type": AlertType.PRICE_DROP,
            "title": "Price Drop Alert",
            "message": "Price has dropped! Check out the new pricing.",
            "channels": [NotificationChannel.PUSH, NotificationChannel.EMAIL],
            "created_at": clock(),
            "scheduled_at": clock(),
        }
        values.update(overrides)
        return Alert(**values)

    return factory


@pytest.fixture
def sleep_mock():
    """Stands in for asyncio.sleep in retry backoff."""
    return AsyncMock()


@pytest.fixture
def engine(test_settings, transports, preferences, clock, sleep_mock):
    """A fully wired in-memory alert engine."""
    repository = InMemoryAlertRepository()
    history = InMemoryDeliveryHistory()
    event_bus = EventBus("test")
    service = build_alert_service(
        test_settings,
        repository=repository,
        preferences=preferences,
        history=history,
        transports=transports,
        event_bus=event_bus,
        clock=clock,
        retry_sleep=sleep_mock,
    )
    return {
        "service": service,
        "repository": repository,
        "history": history,
        "event_bus": event_bus,
        "transports": transports,
        "preferences": preferences,
        "clock": clock,
        "sleep": sleep_mock,
    }
