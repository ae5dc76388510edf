"""
Push Delivery
Outbound delivery of a notification payload to one subscription endpoint.
"""
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from aslan_crm.core.config import settings
from aslan_crm.core.logging import notifications_logger


@dataclass
class DeliveryResult:
    endpoint: str
    success: bool
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "endpoint": self.endpoint}
        if self.error:
            data["error"] = self.error
        return data


class HttpxPushSender:
    """
    POSTs the JSON payload to the subscription endpoint.

    Never raises: timeouts, transport errors and non-2xx answers are turned
    into a failed DeliveryResult so one dead device can't stop the fan-out.
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout or settings.PUSH_TIMEOUT_SECONDS
        self.transport = transport

    async def send(self, subscription, payload: dict[str, Any]) -> DeliveryResult:
        endpoint = subscription.endpoint
        headers = {"Content-Type": "application/json", "TTL": "86400"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(endpoint, json=payload, headers=headers)
        except httpx.TimeoutException:
            notifications_logger.warning("Push delivery timed out", endpoint=endpoint)
            return DeliveryResult(endpoint=endpoint, success=False, error="timeout")
        except httpx.RequestError as e:
            notifications_logger.warning("Push delivery request error", endpoint=endpoint, error=str(e))
            return DeliveryResult(endpoint=endpoint, success=False, error=str(e))

        if 200 <= response.status_code < 300:
            return DeliveryResult(endpoint=endpoint, success=True)

        notifications_logger.warning(
            "Push delivery rejected",
            endpoint=endpoint,
            status=response.status_code,
            body=response.text[:200],
        )
        return DeliveryResult(endpoint=endpoint, success=False, error=f"HTTP {response.status_code}")


def build_payload(
    title: str,
    body: Optional[str],
    task_id: Optional[int] = None,
    order_id: Optional[int] = None,
    url: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "title": title,
        "body": body,
        "taskId": task_id,
        "orderId": order_id,
        "url": url or settings.DEFAULT_NOTIFICATION_URL,
    }


def get_push_sender() -> HttpxPushSender:
    """FastAPI dependency; overridden in tests with a recording sender."""
    return HttpxPushSender()
