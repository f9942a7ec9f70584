"""Bounded exponential-backoff retry around a single channel dispatch."""

import asyncio
from typing import Awaitable, Callable, Optional

from ...config.logging import get_logger
from .channels import ChannelAdapter
from .exceptions import DispatchAborted, TerminalDeliveryFailure, TransportError
from .models import Alert, DeliveryDestinations, DeliveryResult

logger = get_logger(__name__)


class RetryController:
    """
    Retry transient transport errors for one channel.

    After failed attempt ``n`` the controller waits ``base_delay_ms * 2**(n-1)``
    before trying again. Validation failures such as a missing destination are
    returned as-is, never retried. Retries here do not touch the alert's
    ``delivery_attempts`` counter.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 5000,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep or asyncio.sleep
        self.logger = logger.bind(component="retry_controller")

    def compute_delay(self, attempt: int) -> float:
        """Delay in seconds after failed attempt ``attempt`` (1-based)."""
        return self.base_delay_ms * (2 ** (attempt - 1)) / 1000

    async def with_retry(
        self,
        adapter: ChannelAdapter,
        alert: Alert,
        destinations: DeliveryDestinations,
        attempt: int = 1,
        dry_run: bool = False,
        should_abort: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> DeliveryResult:
        """
        Dispatch through ``adapter`` until it succeeds or the budget runs out.

        Raises:
            TerminalDeliveryFailure: every attempt up to ``max_attempts`` failed
            DispatchAborted: ``should_abort`` returned True after a backoff
        """
        last_error: Optional[str] = None

        while attempt <= self.max_attempts:
            try:
                result = await adapter.attempt(alert, destinations, dry_run=dry_run)
                result.metadata["attempts"] = attempt
                return result
            except TransportError as e:
                last_error = e.message

            if attempt == self.max_attempts:
                break

            delay = self.compute_delay(attempt)
            self.logger.warning(
                "Channel dispatch failed, backing off",
                alert_id=alert.id,
                channel=adapter.channel.value,
                attempt=attempt,
                max_attempts=self.max_attempts,
                delay_seconds=delay,
                error=last_error,
            )
            await self._sleep(delay)
            if should_abort is not None and await should_abort():
                self.logger.info(
                    "Channel dispatch aborted during backoff",
                    alert_id=alert.id,
                    channel=adapter.channel.value,
                    attempts=attempt,
                )
                raise DispatchAborted(adapter.channel.value, attempt)
            attempt += 1

        self.logger.error(
            "Channel retry budget exhausted",
            alert_id=alert.id,
            channel=adapter.channel.value,
            attempts=self.max_attempts,
            error=last_error,
        )
        raise TerminalDeliveryFailure(adapter.channel.value, self.max_attempts, last_error)
