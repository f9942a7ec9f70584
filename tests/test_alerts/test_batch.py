"""Tests for batch processing."""

import asyncio

import pytest

from alertdesk.bootstrap import build_alert_service
from alertdesk.events import EventBus
from alertdesk.services.alerts import (
    AlertStatus,
    BatchConfig,
    InMemoryAlertRepository,
    InMemoryPreferencesProvider,
    NotificationChannel,
    RepositoryError,
)
from alertdesk.services.alerts.models import REPOSITORY_ERROR, TIMEOUT

from conftest import RecordingTransport


class TestBatchConfig:
    """Test BatchConfig validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"batch_size": 0},
            {"batch_size": 1001},
            {"max_retries": -1},
            {"retry_delay_ms": 0},
            {"timeout_ms": 0},
        ],
    )
    def test_rejects_out_of_range_values(self, kwargs):
        """Test invalid batch settings are refused."""
        with pytest.raises(ValueError):
            BatchConfig(**kwargs)


class TestProcessBatch:
    """Test BatchProcessor.process_batch."""

    @pytest.mark.asyncio
    async def test_missing_ids_are_skipped(self, engine, make_alert):
        """Test results are produced only for alerts that exist."""
        ids = []
        for index in range(3):
            alert = await engine["repository"].add(
                make_alert(channels=[NotificationChannel.PUSH], product_id=f"product-{index}")
            )
            ids.append(alert.id)

        results = await engine["service"].process_batch_alerts(
            [ids[0], "missing-1", ids[1], "missing-2", ids[2]]
        )

        assert sorted(result.alert_id for result in results) == sorted(ids)
        assert all(result.success for result in results)

    @pytest.mark.asyncio
    async def test_duplicate_ids_processed_once(self, engine, make_alert):
        """Test an id listed twice is dispatched once."""
        alert = await engine["repository"].add(
            make_alert(channels=[NotificationChannel.PUSH])
        )

        results = await engine["service"].process_batch_alerts([alert.id, alert.id])

        assert len(results) == 1
        assert engine["transports"][NotificationChannel.PUSH].calls == 1

    @pytest.mark.asyncio
    async def test_small_chunks_cover_every_alert(self, engine, make_alert):
        """Test chunking does not drop alerts."""
        ids = []
        for index in range(5):
            alert = await engine["repository"].add(
                make_alert(channels=[NotificationChannel.PUSH], product_id=f"product-{index}")
            )
            ids.append(alert.id)

        results = await engine["service"].process_batch_alerts(
            ids, config=BatchConfig(batch_size=2)
        )

        assert {result.alert_id for result in results} == set(ids)

    @pytest.mark.asyncio
    async def test_foreign_alerts_skipped_with_user_scope(self, engine, make_alert):
        """Test a user-scoped batch ignores other users' alerts."""
        own = await engine["repository"].add(make_alert(channels=[NotificationChannel.PUSH]))
        other = await engine["repository"].add(
            make_alert(user_id="user-2", channels=[NotificationChannel.PUSH])
        )

        results = await engine["service"].process_batch_alerts(
            [own.id, other.id], user_id="user-1"
        )

        assert [result.alert_id for result in results] == [own.id]
        stored = await engine["repository"].get(other.id)
        assert stored.status == AlertStatus.PENDING

    @pytest.mark.asyncio
    async def test_timeout_produces_synthetic_failure(self, engine, make_alert):
        """Test an alert that overruns the batch timeout gets a timeout result."""

        class SlowTransport(RecordingTransport):
            async def send(self, payload):
                await asyncio.sleep(0.5)
                return await super().send(payload)

        orchestrator = engine["service"].orchestrator
        orchestrator.adapters[NotificationChannel.PUSH].transport = SlowTransport("push")
        alert = await engine["repository"].add(
            make_alert(channels=[NotificationChannel.PUSH])
        )

        results = await engine["service"].process_batch_alerts(
            [alert.id], config=BatchConfig(timeout_ms=50)
        )

        assert len(results) == 1
        assert results[0].error == TIMEOUT
        assert results[0].channel is None
        assert not results[0].success
        assert engine["service"].statistics.get().rejected == 1

    @pytest.mark.asyncio
    async def test_retry_budget_comes_from_config(self, engine, make_alert):
        """Test max_retries bounds the channel attempts within a batch."""
        engine["transports"][NotificationChannel.PUSH].outcomes = [False] * 10
        alert = await engine["repository"].add(
            make_alert(channels=[NotificationChannel.PUSH])
        )

        results = await engine["service"].process_batch_alerts(
            [alert.id], config=BatchConfig(max_retries=1, retry_delay_ms=10)
        )

        assert not results[0].success
        assert results[0].metadata["attempts"] == 2
        assert engine["transports"][NotificationChannel.PUSH].calls == 2
        engine["sleep"].assert_awaited_once_with(0.01)

    @pytest.mark.asyncio
    async def test_dry_run_batch(self, engine, make_alert):
        """Test a dry-run batch sends nothing."""
        alert = await engine["repository"].add(make_alert())

        results = await engine["service"].process_batch_alerts([alert.id], dry_run=True)

        assert results and all(result.dry_run for result in results)
        assert all(t.calls == 0 for t in engine["transports"].values())


class TestRepositoryFailures:
    """Test persistence failures inside a batch."""

    @pytest.mark.asyncio
    async def test_save_failure_yields_repository_error(
        self, test_settings, transports, preferences, clock, sleep_mock, make_alert
    ):
        """Test one alert's repository failure does not stop the batch."""
        broken = make_alert(channels=[NotificationChannel.PUSH])
        healthy = make_alert(channels=[NotificationChannel.PUSH], product_id="product-2")

        class FlakyRepository(InMemoryAlertRepository):
            async def save(self, alert):
                if alert.id == broken.id:
                    raise RepositoryError("save", "database is locked")
                return await super().save(alert)

        repository = FlakyRepository([broken, healthy])
        service = build_alert_service(
            test_settings,
            repository=repository,
            preferences=preferences,
            transports=transports,
            event_bus=EventBus("test"),
            clock=clock,
            retry_sleep=sleep_mock,
        )

        results = await service.process_batch_alerts([broken.id, healthy.id])

        by_alert = {}
        for result in results:
            by_alert.setdefault(result.alert_id, []).append(result)
        assert [r.error for r in by_alert[broken.id]] == [REPOSITORY_ERROR]
        assert all(r.success for r in by_alert[healthy.id])
        assert (await repository.get(healthy.id)).status == AlertStatus.SENT

        stats = service.statistics.get()
        assert stats.rejected == 1
        assert stats.total_deliveries == 1
        assert [r.error for r in service.statistics.history(broken.id)] == [
            REPOSITORY_ERROR
        ]


class TestUnexpectedFailures:
    """Test failures the batch contains per alert."""

    def _service(self, test_settings, repository, preferences, transports, clock, sleep_mock):
        return build_alert_service(
            test_settings,
            repository=repository,
            preferences=preferences,
            transports=transports,
            event_bus=EventBus("test"),
            clock=clock,
            retry_sleep=sleep_mock,
        )

    @pytest.mark.asyncio
    async def test_preferences_error_isolated_to_one_alert(
        self, test_settings, transports, preferences, clock, sleep_mock, make_alert
    ):
        """Test an exception while loading preferences fails only that alert."""
        alerts = [
            make_alert(channels=[NotificationChannel.PUSH], product_id="product-1"),
            make_alert(
                user_id="user-2", channels=[NotificationChannel.PUSH], product_id="product-2"
            ),
            make_alert(channels=[NotificationChannel.PUSH], product_id="product-3"),
        ]

        class BrokenForUser2(InMemoryPreferencesProvider):
            async def get(self, user_id):
                if user_id == "user-2":
                    raise RuntimeError("preferences unavailable")
                return await super().get(user_id)

        provider = BrokenForUser2([await preferences.get("user-1")])
        repository = InMemoryAlertRepository(alerts)
        service = self._service(
            test_settings, repository, provider, transports, clock, sleep_mock
        )

        results = await service.process_batch_alerts([alert.id for alert in alerts])

        by_alert = {result.alert_id: result for result in results}
        assert len(results) == 3
        assert by_alert[alerts[1].id].error == "preferences unavailable"
        assert by_alert[alerts[1].id].channel is None
        assert by_alert[alerts[0].id].success
        assert by_alert[alerts[2].id].success
        assert (await repository.get(alerts[1].id)).status == AlertStatus.PENDING

    @pytest.mark.asyncio
    async def test_alert_removed_mid_batch_is_skipped(
        self, test_settings, transports, preferences, clock, sleep_mock, make_alert
    ):
        """Test an alert that disappears after loading yields no result."""
        vanishing = make_alert(channels=[NotificationChannel.PUSH])
        healthy = make_alert(channels=[NotificationChannel.PUSH], product_id="product-2")

        class VanishingRepository(InMemoryAlertRepository):
            reads = 0

            async def get(self, alert_id):
                if alert_id == vanishing.id:
                    self.reads += 1
                    if self.reads > 1:
                        return None
                return await super().get(alert_id)

        repository = VanishingRepository([vanishing, healthy])
        service = self._service(
            test_settings, repository, preferences, transports, clock, sleep_mock
        )

        results = await service.process_batch_alerts([vanishing.id, healthy.id])

        assert [result.alert_id for result in results] == [healthy.id]
        assert results[0].success
