"""PagerDuty Events API v2 channel."""

import logging
from typing import Any

import httpx

from fleetwatch.adapters.channels.base import DEFAULT_TIMEOUT, WebhookChannel
from fleetwatch.core.errors import NotificationError
from fleetwatch.core.models import Alert, AlertSeverity

logger = logging.getLogger(__name__)

EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"

_PAGERDUTY_SEVERITY = {
    AlertSeverity.CRITICAL: "critical",
    AlertSeverity.HIGH: "error",
    AlertSeverity.MEDIUM: "warning",
    AlertSeverity.LOW: "info",
}


def map_severity(severity: AlertSeverity | str) -> str:
    """Map an alert severity onto the PagerDuty severity vocabulary."""
    try:
        return _PAGERDUTY_SEVERITY[AlertSeverity(severity)]
    except ValueError:
        return "info"


def build_event(alert: Alert, routing_key: str) -> dict[str, Any]:
    """Build a trigger event.

    The dedup key is derived from the alert's dedup key, so PagerDuty
    folds repeated triggers for one condition into one incident.
    """
    return {
        "routing_key": routing_key,
        "event_action": "trigger",
        "dedup_key": f"{alert.service_name}-{alert.alert_type}",
        "payload": {
            "summary": alert.title,
            "source": alert.service_name,
            "severity": map_severity(alert.severity),
            "custom_details": {
                "description": alert.description,
                "alert_type": alert.alert_type,
                "value": alert.value,
                "threshold": alert.threshold,
                "labels": alert.labels,
            },
        },
    }


class PagerDutyChannel(WebhookChannel):
    """Triggers PagerDuty incidents through the Events API."""

    name = "pagerduty"

    def __init__(
        self,
        integration_key: str | None,
        enabled: bool = True,
        events_url: str = EVENTS_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._integration_key = integration_key
        self._enabled = enabled
        self._events_url = events_url

    @property
    def enabled(self) -> bool:
        return self._enabled and bool(self._integration_key)

    async def send(self, alert: Alert) -> None:
        if not self._integration_key:
            raise NotificationError("pagerduty integration key is not configured")
        await self._post(
            self._events_url, build_event(alert, self._integration_key), alert
        )
        logger.info(
            "PagerDuty notification sent",
            extra={"alert_id": alert.id, "severity": str(alert.severity)},
        )
