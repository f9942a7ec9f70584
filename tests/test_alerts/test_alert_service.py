"""Tests for the alert service."""

from datetime import timedelta

import pytest

from alertdesk.services.alerts import (
    AlertCreationRequest,
    AlertFilter,
    AlertNotFoundError,
    AlertPatch,
    AlertPriority,
    AlertStatus,
    AlertType,
    AlertValidationError,
    InvalidStatusTransitionError,
    NotificationChannel,
)


def request(**overrides):
    values = {
        "user_id": "user-1",
        "product_id": "product-1",
        "type": AlertType.PRICE_DROP,
        "conditions": {"percentage_drop": 20},
    }
    values.update(overrides)
    return AlertCreationRequest(**values)


class TestCreateAlert:
    """Test AlertService.create_alert."""

    @pytest.mark.asyncio
    async def test_creates_pending_alert_with_defaults(self, engine):
        """Test generated content, priority and channels."""
        alert = await engine["service"].create_alert(request())
        await engine["event_bus"].drain()

        assert alert.status == AlertStatus.PENDING
        assert alert.title == "Price Drop Alert"
        assert alert.message.endswith("Watching for a 20% drop.")
        assert alert.priority == AlertPriority.HIGH
        assert alert.channels == [NotificationChannel.PUSH, NotificationChannel.EMAIL]
        assert alert.scheduled_at == engine["clock"]()
        assert alert.delivery_attempts == 0
        assert await engine["repository"].get(alert.id) is not None

        events = [e["event_type"] for e in engine["event_bus"].get_event_history()]
        assert events == ["AlertCreatedEvent"]

    @pytest.mark.asyncio
    async def test_explicit_values_win(self, engine):
        """Test caller-provided priority and channels are kept."""
        alert = await engine["service"].create_alert(
            request(priority=AlertPriority.LOW, channels=[NotificationChannel.SMS])
        )

        assert alert.priority == AlertPriority.LOW
        assert alert.channels == [NotificationChannel.SMS]

    @pytest.mark.asyncio
    async def test_invalid_request_lists_every_error(self, engine):
        """Test all validation errors are reported together."""
        with pytest.raises(AlertValidationError) as exc_info:
            await engine["service"].create_alert(
                {
                    "user_id": "user-1",
                    "product_id": "product-1",
                    "type": "price_drop",
                    "conditions": {"target_price": -1, "min_rating": 9},
                    "channels": [],
                    "schedule": {"quiet_hours": {"start": "23:00", "end": "07:00"}},
                }
            )

        assert exc_info.value.errors == [
            "Target price must be positive",
            "Minimum rating must be between 1 and 5",
            "At least one notification channel is required",
            "Quiet hours start time must be before end time",
        ]
        assert await engine["repository"].count_alerts() == 0

    @pytest.mark.asyncio
    async def test_user_alert_limit(self, engine):
        """Test creation stops at the per-user limit."""
        service = engine["service"]
        service.max_alerts_per_user = 2
        await service.create_alert(request())
        second = await service.create_alert(request())

        with pytest.raises(AlertValidationError, match=r"Maximum number of alerts \(2\)"):
            await service.create_alert(request())

        await service.delete_alert(second.id)
        assert await service.create_alert(request())


class TestUpdateAlert:
    """Test AlertService.update_alert."""

    @pytest.mark.asyncio
    async def test_patch_fields(self, engine):
        """Test allowed fields are updated and the version moves."""
        alert = await engine["service"].create_alert(request())

        updated = await engine["service"].update_alert(
            alert.id, {"title": "Cheaper now", "priority": AlertPriority.URGENT}
        )

        assert updated.title == "Cheaper now"
        assert updated.priority == AlertPriority.URGENT
        assert updated.version == alert.version + 1

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, engine):
        """Test fields outside the patch set are refused."""
        alert = await engine["service"].create_alert(request())

        with pytest.raises(AlertValidationError, match="delivery_attempts"):
            await engine["service"].update_alert(alert.id, {"delivery_attempts": 0})

    @pytest.mark.asyncio
    async def test_string_values_become_enums(self, engine):
        """Test a plain dict patch is converted to enum-typed values."""
        alert = await engine["service"].create_alert(request())

        updated = await engine["service"].update_alert(
            alert.id,
            {
                "priority": "high",
                "channels": ["push", "push"],
                "schedule": {"cooldown_minutes": 5},
            },
        )

        assert updated.priority == AlertPriority.HIGH
        assert updated.channels == [NotificationChannel.PUSH]
        assert updated.schedule.cooldown_minutes == 5
        assert updated.schedule.max_alerts_per_day == 10

        results = await engine["service"].orchestrator.process(alert.id)
        assert [(r.channel, r.success) for r in results] == [(NotificationChannel.PUSH, True)]

    @pytest.mark.asyncio
    async def test_cancel_with_string_status(self, engine):
        """Test a string status cancels through the state machine."""
        alert = await engine["service"].create_alert(request())

        cancelled = await engine["service"].update_alert(alert.id, {"status": "cancelled"})

        assert cancelled.status == AlertStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_invalid_values_rejected(self, engine):
        """Test unknown enum values and bad lengths are validation errors."""
        alert = await engine["service"].create_alert(request())

        with pytest.raises(AlertValidationError) as exc_info:
            await engine["service"].update_alert(
                alert.id, {"priority": "critical", "title": ""}
            )

        assert exc_info.value.errors[0].startswith("priority:")
        assert exc_info.value.errors[1] == "Title must be between 1 and 200 characters"
        assert (await engine["service"].get_alert(alert.id)).priority == alert.priority

    @pytest.mark.asyncio
    async def test_unknown_alert(self, engine):
        """Test updating a missing alert raises."""
        with pytest.raises(AlertNotFoundError):
            await engine["service"].update_alert("missing", AlertPatch(title="x"))

    @pytest.mark.asyncio
    async def test_sent_alert_cannot_be_requeued(self, engine):
        """Test a sent alert never goes back to pending."""
        alert = await engine["service"].create_alert(request())
        await engine["service"].orchestrator.process(alert.id)

        with pytest.raises(InvalidStatusTransitionError):
            await engine["service"].update_alert(alert.id, {"status": AlertStatus.PENDING})

    @pytest.mark.asyncio
    async def test_failed_alert_requeue_is_due_now(self, engine):
        """Test re-queueing a failed alert makes it due immediately."""
        engine["transports"][NotificationChannel.PUSH].outcomes = [False] * 3
        alert = await engine["service"].create_alert(
            request(channels=[NotificationChannel.PUSH])
        )
        await engine["service"].orchestrator.process(alert.id)
        failed = await engine["service"].get_alert(alert.id)
        assert failed.status == AlertStatus.FAILED
        assert failed.scheduled_at > engine["clock"]()

        requeued = await engine["service"].update_alert(
            alert.id, {"status": AlertStatus.PENDING}
        )

        assert requeued.status == AlertStatus.PENDING
        assert requeued.scheduled_at == engine["clock"]()
        assert requeued.delivery_attempts == 1


class TestDeleteAlert:
    """Test AlertService.delete_alert."""

    @pytest.mark.asyncio
    async def test_soft_delete(self, engine):
        """Test deleting cancels the alert and is idempotent."""
        alert = await engine["service"].create_alert(request())

        assert await engine["service"].delete_alert(alert.id) is True
        assert await engine["service"].delete_alert(alert.id) is True

        stored = await engine["service"].get_alert(alert.id)
        assert stored.status == AlertStatus.CANCELLED
        await engine["event_bus"].drain()
        events = [e["event_type"] for e in engine["event_bus"].get_event_history()]
        assert events.count("AlertCancelledEvent") == 1

    @pytest.mark.asyncio
    async def test_missing_alert(self, engine):
        """Test deleting an unknown alert returns False."""
        assert await engine["service"].delete_alert("missing") is False

    @pytest.mark.asyncio
    async def test_sent_alert_cannot_be_cancelled(self, engine):
        """Test a sent alert stays sent."""
        alert = await engine["service"].create_alert(request())
        await engine["service"].orchestrator.process(alert.id)

        with pytest.raises(InvalidStatusTransitionError):
            await engine["service"].delete_alert(alert.id)


class TestQueries:
    """Test listing, validation and reporting."""

    @pytest.mark.asyncio
    async def test_user_alerts_newest_first_and_paginated(self, engine):
        """Test ordering, filtering and page maths."""
        service = engine["service"]
        created = []
        for _ in range(5):
            created.append(await service.create_alert(request()))
            engine["clock"].advance(minutes=1)
        await service.create_alert(request(user_id="user-2"))

        page = await service.get_user_alerts(AlertFilter(user_id="user-1", page=2, limit=2))

        assert page.total == 5
        assert page.total_pages == 3
        assert [a.id for a in page.alerts] == [created[2].id, created[1].id]

    @pytest.mark.asyncio
    async def test_user_alerts_filters(self, engine):
        """Test type and active filters."""
        service = engine["service"]
        drop = await service.create_alert(request())
        stock = await service.create_alert(request(type=AlertType.BACK_IN_STOCK))
        await service.delete_alert(stock.id)

        by_type = await service.get_user_alerts(
            AlertFilter(user_id="user-1", type=AlertType.PRICE_DROP)
        )
        active = await service.get_user_alerts(AlertFilter(user_id="user-1", active=True))

        assert [a.id for a in by_type.alerts] == [drop.id]
        assert [a.id for a in active.alerts] == [drop.id]

    def test_validate_alert_config(self, engine):
        """Test validation reports errors without creating anything."""
        service = engine["service"]

        assert service.validate_alert_config(request()) == {"valid": True, "errors": []}
        outcome = service.validate_alert_config(
            request(expires_at=engine["clock"]() - timedelta(minutes=1))
        )
        assert outcome == {
            "valid": False,
            "errors": ["Expiration date must be in the future"],
        }

    @pytest.mark.asyncio
    async def test_delivery_report(self, engine):
        """Test the report lists every recorded delivery."""
        alert = await engine["service"].create_alert(request())
        await engine["service"].orchestrator.process(alert.id)

        report = await engine["service"].get_alert_delivery_report(alert.id)

        assert report.alert.status == AlertStatus.SENT
        assert len(report.deliveries) == 2
        assert report.summary.successful_deliveries == 2

    def test_format_alert_message(self, engine, make_alert):
        """Test localized text with a fallback to the stored message."""
        service = engine["service"]
        alert = make_alert()

        assert service.format_alert_message(alert, "en") == (
            "Price has dropped! Check out the new pricing."
        )
        assert service.format_alert_message(alert) == (
            "価格が下がりました！新しい価格をチェックしてください。"
        )
        assert service.format_alert_message(alert, "fr") == alert.message


class TestProcessAlerts:
    """Test scheduled processing passes."""

    @pytest.mark.asyncio
    async def test_second_pass_is_a_no_op(self, engine):
        """Test an alert is delivered once across repeated passes."""
        service = engine["service"]
        await service.create_alert(request(channels=[NotificationChannel.PUSH]))

        first = await service.process_alerts()
        second = await service.process_alerts()

        assert len(first) == 1 and first[0].success
        assert second == []
        assert engine["transports"][NotificationChannel.PUSH].calls == 1

    @pytest.mark.asyncio
    async def test_failed_alert_waits_for_backoff(self, engine):
        """Test a failed alert is not due until its retry time."""
        engine["transports"][NotificationChannel.PUSH].outcomes = [False] * 4
        service = engine["service"]
        await service.create_alert(request(channels=[NotificationChannel.PUSH]))

        await service.process_alerts()
        assert await service.process_alerts() == []

        engine["clock"].advance(minutes=5)
        retried = await service.process_alerts()
        assert len(retried) == 1 and retried[0].success

    @pytest.mark.asyncio
    async def test_expired_alert_skipped(self, engine):
        """Test alerts past expiry are not processed."""
        service = engine["service"]
        await service.create_alert(
            request(expires_at=engine["clock"]() + timedelta(minutes=1))
        )
        engine["clock"].advance(minutes=2)

        assert await service.process_alerts() == []

    @pytest.mark.asyncio
    async def test_statistics(self, engine):
        """Test statistics combine delivery counters with alert counts."""
        service = engine["service"]
        sent = await service.create_alert(request(channels=[NotificationChannel.PUSH]))
        await service.create_alert(request(product_id="product-2"))
        await service.orchestrator.process(sent.id)

        stats = await service.get_alert_statistics("user-1")

        assert stats.total_alerts == 2
        assert stats.active_alerts == 1
        assert stats.successful_deliveries == 1
        assert stats.by_channel["push"].delivered == 1
