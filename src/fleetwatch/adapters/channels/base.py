"""Helpers shared by the notification channels."""

from datetime import UTC, datetime
from typing import Any

import httpx

from fleetwatch.core.errors import NotificationError
from fleetwatch.core.models import Alert, AlertSeverity

DEFAULT_TIMEOUT = 10.0

_SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: "#dc3545",
    AlertSeverity.HIGH: "#fd7e14",
    AlertSeverity.MEDIUM: "#ffc107",
    AlertSeverity.LOW: "#28a745",
}
_DEFAULT_COLOR = "#6c757d"


def severity_color(severity: AlertSeverity | str) -> str:
    """Return the display color for a severity tier."""
    try:
        return _SEVERITY_COLORS[AlertSeverity(severity)]
    except ValueError:
        return _DEFAULT_COLOR


def format_timestamp(timestamp: float | None = None) -> str:
    """Return an ISO 8601 UTC timestamp, defaulting to now."""
    if timestamp is None:
        return datetime.now(UTC).isoformat()
    return datetime.fromtimestamp(timestamp, UTC).isoformat()


class WebhookChannel:
    """Base for channels that deliver by POSTing JSON over HTTP.

    A caller-supplied ``httpx.AsyncClient`` is used as-is and never closed
    here; without one, a short-lived client is created per send.
    """

    name = "webhook"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def _post(self, url: str, payload: dict[str, Any], alert: Alert) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(
                f"{self.name} delivery failed for alert {alert.id}: {e}"
            ) from e
