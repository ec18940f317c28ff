"""Severity-routed fan-out of alerts to notification channels."""

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from fleetwatch.core.errors import ChannelDisabledError, UnknownChannelError
from fleetwatch.core.models import Alert, AlertSeverity, AlertStatus
from fleetwatch.core.ports import NotificationChannel

logger = logging.getLogger(__name__)

DEFAULT_ROUTES: dict[AlertSeverity, tuple[str, ...]] = {
    AlertSeverity.CRITICAL: ("email", "slack", "pagerduty"),
    AlertSeverity.HIGH: ("email",),
    AlertSeverity.MEDIUM: ("email",),
    AlertSeverity.LOW: ("email",),
}


@dataclass
class DispatchReport:
    """Outcome of one alert's fan-out.

    ``results`` maps each attempted channel name to None on success or to
    the exception the channel raised.
    """

    alert_id: str
    results: dict[str, BaseException | None] = field(default_factory=dict)

    @property
    def delivered(self) -> list[str]:
        return [name for name, error in self.results.items() if error is None]

    @property
    def failed(self) -> dict[str, BaseException]:
        return {
            name: error for name, error in self.results.items() if error is not None
        }


def build_test_alert(service_name: str) -> Alert:
    """The fixed low-severity alert used to verify channel configuration."""
    now = datetime.now(UTC)
    return Alert(
        id="test-alert",
        service_name=service_name,
        alert_type="test_alert",
        severity=AlertSeverity.LOW,
        status=AlertStatus.ACTIVE,
        title="Test Alert",
        description="This is a test alert to verify notification configuration.",
        created_at=now.timestamp(),
        value=100.0,
        threshold=90.0,
        labels={"test": "true", "timestamp": now.isoformat()},
    )


class NotificationDispatcher:
    """Delivers alerts to the channels routed for their severity.

    Args:
        channels: Available channels, keyed by their ``name``.
        routes: Severity to ordered channel names. Defaults to email for
            every tier plus slack and pagerduty for critical alerts.
        service_name: Source service for test alerts.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        routes: Mapping[AlertSeverity, Sequence[str]] | None = None,
        service_name: str = "fleetwatch",
    ) -> None:
        self._channels = {channel.name: channel for channel in channels}
        self._routes = dict(DEFAULT_ROUTES if routes is None else routes)
        self._service_name = service_name

    def channels_for(self, severity: AlertSeverity) -> list[NotificationChannel]:
        """Enabled channels routed for a severity, in routing order."""
        selected = []
        for name in self._routes.get(AlertSeverity(severity), ()):
            channel = self._channels.get(name)
            if channel is not None and channel.enabled:
                selected.append(channel)
        return selected

    async def _send(
        self, channel: NotificationChannel, alert: Alert
    ) -> BaseException | None:
        try:
            await channel.send(alert)
        except Exception as e:
            logger.error(
                "Notification channel failed",
                exc_info=True,
                extra={"channel": channel.name, "alert_id": alert.id},
            )
            return e
        return None

    async def dispatch(self, alert: Alert) -> DispatchReport:
        """Send an alert through every routed channel concurrently.

        Channel failures are logged and reported, never raised.
        """
        targets = self.channels_for(alert.severity)
        outcomes = await asyncio.gather(
            *(self._send(channel, alert) for channel in targets)
        )
        report = DispatchReport(
            alert_id=alert.id,
            results={
                channel.name: outcome
                for channel, outcome in zip(targets, outcomes, strict=True)
            },
        )
        logger.info(
            "Alert notification dispatched",
            extra={
                "alert_id": alert.id,
                "service": alert.service_name,
                "severity": str(alert.severity),
                "delivered": ",".join(report.delivered),
                "failed": ",".join(report.failed),
            },
        )
        return report

    async def send_test(self, channel: str) -> None:
        """Send the test alert through exactly one channel.

        Raises:
            UnknownChannelError: No channel has this name.
            ChannelDisabledError: The channel is disabled or unconfigured.
            NotificationError: Delivery failed.
        """
        target = self._channels.get(channel)
        if target is None:
            raise UnknownChannelError(f"unknown notification channel: {channel}")
        if not target.enabled:
            raise ChannelDisabledError(
                f"notification channel {channel} is not enabled or not configured"
            )
        await target.send(build_test_alert(self._service_name))
        logger.info("Test notification sent", extra={"channel": channel})

    def status(self) -> dict[str, bool]:
        """Enabled flag per registered channel."""
        return {name: channel.enabled for name, channel in self._channels.items()}
