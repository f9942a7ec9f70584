"""Transport gateways that actually hand notifications to the outside world."""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union

import aiohttp

from ...config.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TransportReceipt:
    """Normalized transport response."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


TransportResponse = Union[TransportReceipt, bool, Dict[str, Any], None]


class Transport(Protocol):
    """A gateway exposing a single send call."""

    async def send(self, payload: Dict[str, Any]) -> TransportResponse: ...


def normalize_response(response: TransportResponse) -> TransportReceipt:
    """Turn whatever a transport returned into a TransportReceipt."""
    if isinstance(response, TransportReceipt):
        return response
    if isinstance(response, bool):
        return TransportReceipt(success=response)
    if isinstance(response, dict):
        message_id = response.get("id") or response.get("message_id")
        return TransportReceipt(
            success=bool(response.get("success", True)),
            message_id=str(message_id) if message_id is not None else None,
            error=response.get("error"),
        )
    return TransportReceipt(success=False, error="Transport returned no response")


class LoggingTransport:
    """Transport that only logs the payload; used when no gateway is configured."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logger.bind(transport=name)

    async def send(self, payload: Dict[str, Any]) -> TransportReceipt:
        message_id = f"{self.name}_{int(time.time() * 1000)}"
        self.logger.info(
            "Notification handed to logging transport",
            message_id=message_id,
            payload_keys=sorted(payload),
        )
        return TransportReceipt(success=True, message_id=message_id)


class HttpGatewayTransport:
    """Posts JSON payloads to an HTTP notification gateway."""

    def __init__(self, name: str, url: str, auth_token: Optional[str] = None):
        if not url:
            raise ValueError(f"Gateway URL is required for {name} transport")

        self.name = name
        self.url = url
        self.auth_token = auth_token
        self.logger = logger.bind(transport=name)

    async def send(self, payload: Dict[str, Any]) -> TransportReceipt:
        """
        Send a payload to the gateway.

        Returns:
            TransportReceipt; non-2xx responses are failures, network errors raise
        """
        headers = {}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        async with aiohttp.ClientSession() as session:
            async with session.post(self.url, json=payload, headers=headers) as response:
                if 200 <= response.status < 300:
                    body = await response.json(content_type=None)
                    receipt = normalize_response(body if isinstance(body, dict) else True)
                    self.logger.debug(
                        "Gateway accepted notification",
                        status=response.status,
                        message_id=receipt.message_id,
                    )
                    return receipt

                error_text = await response.text()
                self.logger.warning(
                    "Gateway rejected notification",
                    status=response.status,
                    error=error_text[:200],
                )
                return TransportReceipt(
                    success=False, error=f"HTTP {response.status}: {error_text[:200]}"
                )
