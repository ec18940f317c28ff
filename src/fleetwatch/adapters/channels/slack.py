"""Slack incoming-webhook channel."""

import logging
from typing import Any

import httpx

from fleetwatch.adapters.channels.base import (
    DEFAULT_TIMEOUT,
    WebhookChannel,
    format_timestamp,
    severity_color,
)
from fleetwatch.core.errors import NotificationError
from fleetwatch.core.models import Alert

logger = logging.getLogger(__name__)


def build_payload(alert: Alert) -> dict[str, Any]:
    """Build the webhook message for an alert."""
    return {
        "text": f"Alert: {alert.title}",
        "attachments": [
            {
                "color": severity_color(alert.severity),
                "fields": [
                    {"title": "Service", "value": alert.service_name, "short": True},
                    {"title": "Severity", "value": str(alert.severity), "short": True},
                    {"title": "Alert Type", "value": alert.alert_type, "short": True},
                    {
                        "title": "Description",
                        "value": alert.description,
                        "short": False,
                    },
                    {"title": "Timestamp", "value": format_timestamp(), "short": True},
                ],
            }
        ],
    }


class SlackChannel(WebhookChannel):
    """Posts alerts to a Slack incoming webhook."""

    name = "slack"

    def __init__(
        self,
        webhook_url: str | None,
        enabled: bool = True,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._webhook_url = webhook_url
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._webhook_url)

    async def send(self, alert: Alert) -> None:
        if not self._webhook_url:
            raise NotificationError("slack webhook URL is not configured")
        await self._post(self._webhook_url, build_payload(alert), alert)
        logger.info(
            "Slack notification sent",
            extra={"alert_id": alert.id, "severity": str(alert.severity)},
        )
