"""
Notification Service (notification collaborator).

send() never raises: delivery failures are logged and reported as False so
a flaky mail relay can never block a job from completing or failing.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from citescan.core.config import settings

logger = structlog.get_logger()

TEMPLATE_SCAN_COMPLETE = "scan_complete"
TEMPLATE_SCAN_FAILED = "scan_failed"


class NotificationService(ABC):
    @abstractmethod
    async def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> bool:
        """Deliver a templated message. Returns True on success."""
        pass


class WebhookNotificationService(NotificationService):
    """POSTs {recipient, template_id, data} to a transactional mail webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout or settings.notify_timeout
        self.transport = transport
        self.log = logger.bind(component="WebhookNotificationService")

    async def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> bool:
        payload = {"recipient": recipient, "template_id": template_id, "data": data}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            self.log.error(
                "Notification delivery failed",
                template_id=template_id,
                error=str(e),
            )
            return False

        self.log.info("Notification sent", template_id=template_id)
        return True


class LogNotificationService(NotificationService):
    """Fallback when no webhook is configured: the message is only logged."""

    async def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> bool:
        logger.info("Notification (log only)", recipient=recipient, template_id=template_id, data=data)
        return True


def get_notification_service() -> NotificationService:
    if settings.notify_webhook_url:
        return WebhookNotificationService(settings.notify_webhook_url)
    return LogNotificationService()
