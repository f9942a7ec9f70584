"""Notification channel adapters: one per channel, selected from a lookup table."""

import asyncio
import html
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Protocol

from ...config.logging import get_logger
from .content import (
    action_text,
    action_url,
    in_app_notification_type,
    push_actions,
)
from .exceptions import TransportError
from .models import (
    NO_DESTINATION,
    Alert,
    AlertPriority,
    DeliveryDestinations,
    DeliveryResult,
    NotificationChannel,
)
from .transports import Transport, normalize_response

logger = get_logger(__name__)

SMS_MAX_LENGTH = 160
SMS_ELLIPSIS = "..."
BRAND_COLOR = "#FF6B35"


class ChannelAdapter(Protocol):
    """Capability interface implemented once per notification channel."""

    channel: NotificationChannel

    def has_destination(self, destinations: DeliveryDestinations) -> bool: ...

    async def attempt(
        self, alert: Alert, destinations: DeliveryDestinations, dry_run: bool = False
    ) -> DeliveryResult: ...

    async def deliver(
        self, alert: Alert, destinations: DeliveryDestinations, dry_run: bool = False
    ) -> DeliveryResult: ...


class BaseChannelAdapter:
    """
    Shared delivery flow for every channel.

    ``attempt`` performs one transport call and raises ``TransportError`` on
    transient failure so a retry controller can act on it. ``deliver`` wraps
    ``attempt`` and never raises: anything that goes wrong becomes a failed
    ``DeliveryResult``.
    """

    channel: NotificationChannel

    def __init__(
        self,
        transport: Transport,
        timeout_ms: int = 10000,
        base_url: str = "https://yabaii.day",
        clock=None,
    ):
        self.transport = transport
        self.timeout_ms = timeout_ms
        self.base_url = base_url
        self.clock = clock or datetime.now
        self.logger = logger.bind(channel=self.channel.value)

    def has_destination(self, destinations: DeliveryDestinations) -> bool:
        raise NotImplementedError

    def render(self, alert: Alert, destinations: DeliveryDestinations) -> Dict[str, Any]:
        raise NotImplementedError

    def _result(self, alert: Alert, success: bool, **kwargs) -> DeliveryResult:
        return DeliveryResult(
            alert_id=alert.id,
            channel=self.channel,
            success=success,
            user_id=alert.user_id,
            alert_type=alert.type,
            **kwargs,
        )

    async def attempt(
        self, alert: Alert, destinations: DeliveryDestinations, dry_run: bool = False
    ) -> DeliveryResult:
        """
        Render and send once.

        Raises:
            TransportError: the transport raised, timed out, or reported failure
        """
        if not self.has_destination(destinations):
            self.logger.info("No destination for channel", alert_id=alert.id)
            return self._result(
                alert, False, error=NO_DESTINATION, metadata={"delivery_time_ms": 0}
            )

        payload = self.render(alert, destinations)
        start = asyncio.get_running_loop().time()

        if dry_run:
            return self._result(
                alert,
                True,
                dry_run=True,
                metadata={"delivery_time_ms": 0, "payload": payload},
            )

        try:
            response = await asyncio.wait_for(
                self.transport.send(payload), timeout=self.timeout_ms / 1000
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                self.channel.value, f"Transport timed out after {self.timeout_ms}ms"
            ) from e
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(self.channel.value, str(e) or type(e).__name__) from e

        receipt = normalize_response(response)
        if not receipt.success:
            raise TransportError(
                self.channel.value, receipt.error or "Transport reported failure"
            )

        delivery_time = (asyncio.get_running_loop().time() - start) * 1000
        self.logger.info(
            "Notification delivered",
            alert_id=alert.id,
            message_id=receipt.message_id,
            delivery_time_ms=delivery_time,
        )
        return self._result(
            alert,
            True,
            delivered_at=self.clock(),
            message_id=receipt.message_id,
            metadata={"delivery_time_ms": delivery_time, **self.extra_metadata(destinations)},
        )

    async def deliver(
        self, alert: Alert, destinations: DeliveryDestinations, dry_run: bool = False
    ) -> DeliveryResult:
        start = asyncio.get_running_loop().time()
        try:
            return await self.attempt(alert, destinations, dry_run=dry_run)
        except Exception as e:
            delivery_time = (asyncio.get_running_loop().time() - start) * 1000
            self.logger.error(
                "Failed to deliver notification",
                alert_id=alert.id,
                error=str(e),
                exc_info=True,
            )
            return self._result(
                alert,
                False,
                error=getattr(e, "message", None) or str(e),
                metadata={"delivery_time_ms": delivery_time},
            )

    def extra_metadata(self, destinations: DeliveryDestinations) -> Dict[str, Any]:
        return {}


class PushChannelAdapter(BaseChannelAdapter):
    """Push notifications to every registered device token."""

    channel = NotificationChannel.PUSH

    def has_destination(self, destinations: DeliveryDestinations) -> bool:
        return bool(destinations.push_tokens)

    def render(self, alert: Alert, destinations: DeliveryDestinations) -> Dict[str, Any]:
        return {
            "tokens": list(destinations.push_tokens),
            "title": alert.title,
            "body": alert.message,
            "tag": alert.id,
            "data": {
                "alertId": alert.id,
                "productId": alert.product_id,
                "type": alert.type.value,
                **alert.alert_data,
            },
            "actions": push_actions(alert, self.base_url),
        }

    def extra_metadata(self, destinations: DeliveryDestinations) -> Dict[str, Any]:
        return {"total_tokens": len(destinations.push_tokens)}


class EmailChannelAdapter(BaseChannelAdapter):
    """Templated HTML email."""

    channel = NotificationChannel.EMAIL

    def __init__(
        self,
        transport: Transport,
        sender: str = "noreply@yabaii.day",
        reply_to: str = "support@yabaii.day",
        **kwargs,
    ):
        super().__init__(transport, **kwargs)
        self.sender = sender
        self.reply_to = reply_to

    def has_destination(self, destinations: DeliveryDestinations) -> bool:
        return bool(destinations.email)

    def render(self, alert: Alert, destinations: DeliveryDestinations) -> Dict[str, Any]:
        return {
            "to": destinations.email,
            "from": self.sender,
            "reply_to": self.reply_to,
            "subject": alert.title,
            "html_body": self._render_html(alert),
            "text_body": alert.message,
        }

    def _render_html(self, alert: Alert) -> str:
        data = alert.alert_data
        title = html.escape(alert.title)
        product_name = html.escape(str(data.get("productName", "Product")))
        image = data.get("productImage")

        image_block = ""
        if image:
            image_block = (
                '<div style="text-align: center; margin: 20px 0;">'
                f'<img src="{html.escape(str(image))}" alt="{product_name}" '
                'style="max-width: 200px; border-radius: 4px;"></div>'
            )

        return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <header style="text-align: center; margin-bottom: 30px;">
      <h1 style="color: {BRAND_COLOR}; margin: 0;">Yabaii</h1>
      <p style="margin: 5px 0; color: #666;">Price Comparison &amp; Alerts</p>
    </header>
    <main style="background: #f9f9f9; padding: 30px; border-radius: 8px;">
      <h2 style="color: {BRAND_COLOR}; margin-top: 0;">{title}</h2>
      {image_block}
      <p style="font-size: 16px;">{html.escape(alert.message)}</p>
      {self._render_details(data)}
      <div style="text-align: center; margin: 30px 0;">
        <a href="{html.escape(action_url(alert, self.base_url))}"
           style="background: {BRAND_COLOR}; color: white; padding: 12px 24px;
                  text-decoration: none; border-radius: 4px; font-weight: bold;">
          {action_text(alert)}
        </a>
      </div>
    </main>
    <footer style="text-align: center; color: #666; font-size: 12px;">
      <p>This alert was sent because you subscribed to price notifications.</p>
      <p><a href="{self.base_url}/settings/notifications">Manage your notification preferences</a></p>
    </footer>
  </div>
</body>
</html>"""

    def _render_details(self, data: Mapping[str, Any]) -> str:
        rows = []
        old_price = data.get("oldPrice")
        new_price = data.get("newPrice")
        if old_price and new_price:
            discount = (old_price - new_price) / old_price * 100
            rows.append(
                f"<p><strong>Price Change:</strong> ¥{old_price:,.0f} → "
                f"¥{new_price:,.0f} ({discount:.1f}% off)</p>"
            )
        if data.get("platform"):
            rows.append(
                f"<p><strong>Platform:</strong> {html.escape(str(data['platform']))}</p>"
            )
        if data.get("availability"):
            rows.append(
                "<p><strong>Availability:</strong> "
                f"{html.escape(str(data['availability']))}</p>"
            )
        if not rows:
            return ""
        return (
            '<div style="background: white; padding: 20px; border-radius: 4px;">'
            '<h3 style="margin-top: 0;">Details:</h3>' + "".join(rows) + "</div>"
        )


class SmsChannelAdapter(BaseChannelAdapter):
    """Plain SMS, truncated to a single segment."""

    channel = NotificationChannel.SMS

    def has_destination(self, destinations: DeliveryDestinations) -> bool:
        return bool(destinations.phone)

    def render(self, alert: Alert, destinations: DeliveryDestinations) -> Dict[str, Any]:
        return {
            "to": destinations.phone,
            "body": truncate_sms(alert.message),
            "priority": "high" if alert.priority == AlertPriority.URGENT else "normal",
        }


class InAppChannelAdapter(BaseChannelAdapter):
    """Notification stored for the app to fetch; needs no destination."""

    channel = NotificationChannel.IN_APP

    def has_destination(self, destinations: DeliveryDestinations) -> bool:
        return True

    def render(self, alert: Alert, destinations: DeliveryDestinations) -> Dict[str, Any]:
        expiration_days = 7 if alert.priority == AlertPriority.URGENT else 30
        return {
            "user_id": alert.user_id,
            "alert_id": alert.id,
            "title": alert.title,
            "message": alert.message,
            "type": in_app_notification_type(alert.type),
            "priority": alert.priority.value,
            "data": dict(alert.alert_data),
            "expires_at": (self.clock() + timedelta(days=expiration_days)).isoformat(),
            "action_url": action_url(alert, self.base_url),
            "action_text": action_text(alert),
        }


def truncate_sms(message: str, limit: int = SMS_MAX_LENGTH) -> str:
    """Cut a message to ``limit`` characters, marking the cut with an ellipsis."""
    if len(message) <= limit:
        return message
    return message[: limit - len(SMS_ELLIPSIS)] + SMS_ELLIPSIS


ADAPTER_CLASSES = {
    NotificationChannel.PUSH: PushChannelAdapter,
    NotificationChannel.EMAIL: EmailChannelAdapter,
    NotificationChannel.SMS: SmsChannelAdapter,
    NotificationChannel.IN_APP: InAppChannelAdapter,
}


def build_channel_adapters(
    transports: Mapping[NotificationChannel, Transport],
    timeout_ms: int = 10000,
    base_url: str = "https://yabaii.day",
    email_from: Optional[str] = None,
    email_reply_to: Optional[str] = None,
    clock=None,
) -> Dict[NotificationChannel, BaseChannelAdapter]:
    """Build the channel lookup table for every channel that has a transport."""
    adapters: Dict[NotificationChannel, BaseChannelAdapter] = {}
    for channel, transport in transports.items():
        kwargs: Dict[str, Any] = {
            "timeout_ms": timeout_ms,
            "base_url": base_url,
            "clock": clock,
        }
        if channel == NotificationChannel.EMAIL:
            if email_from:
                kwargs["sender"] = email_from
            if email_reply_to:
                kwargs["reply_to"] = email_reply_to
        adapters[channel] = ADAPTER_CLASSES[channel](transport, **kwargs)
    return adapters
