"""Port interfaces for storage, roster and notification adapters.

These protocols define the contracts that adapters must implement.
The services depend only on these interfaces, not concrete implementations.
"""

from collections.abc import Sequence
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from fleetwatch.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    HealthRecord,
    MetricSample,
    PerformanceSample,
    ServiceEndpoint,
)


class Collection(StrEnum):
    """Persisted collections eligible for retention cleanup."""

    METRICS = "metrics"
    PERFORMANCE = "performance"
    HEALTH = "health"
    ALERTS = "alerts"


@runtime_checkable
class TelemetryStorePort(Protocol):
    """Port for the durable telemetry store.

    Adapters implementing this protocol persist samples, health records
    and alerts. Examples: InMemoryTelemetryStore, SQLiteTelemetryStore.
    """

    async def insert_metrics(self, batch: Sequence[MetricSample]) -> int:
        """Write a batch of metric samples in one operation.

        The batch is written entirely or not at all.

        Returns:
            Number of samples written.
        """
        ...

    async def insert_performance(self, batch: Sequence[PerformanceSample]) -> int:
        """Write a batch of performance samples in one operation."""
        ...

    async def insert_health(self, record: HealthRecord) -> None:
        """Append a health record."""
        ...

    async def latest_health(self, service_name: str) -> HealthRecord | None:
        """Return the most recent health record for a service."""
        ...

    async def latest_health_all(self) -> list[HealthRecord]:
        """Return the most recent health record of every known service."""
        ...

    async def query_health_window(
        self, service_name: str, start: float, end: float
    ) -> list[HealthRecord]:
        """Return health records with start <= last_checked <= end, newest first."""
        ...

    async def latest_metric(self, service_name: str, name: str) -> MetricSample | None:
        """Return the most recent sample of a metric."""
        ...

    async def query_metrics_window(
        self,
        service_name: str,
        name: str | None,
        start: float,
        end: float,
    ) -> list[MetricSample]:
        """Return samples with start <= timestamp <= end, oldest first.

        Args:
            service_name: Service to query.
            name: Metric name, or None for every metric of the service.
            start: Window start (inclusive).
            end: Window end (inclusive).
        """
        ...

    async def query_performance_window(
        self,
        service_name: str,
        start: float,
        end: float,
        endpoint: str | None = None,
    ) -> list[PerformanceSample]:
        """Return performance samples in the window, oldest first."""
        ...

    async def find_active_alert(
        self, service_name: str, alert_type: str
    ) -> Alert | None:
        """Return the open (active or acknowledged) alert for a dedup key."""
        ...

    async def create_alert(self, alert: Alert) -> Alert:
        """Persist a new alert.

        Raises:
            DuplicateAlertError: An open alert already exists for the key.
        """
        ...

    async def update_alert(self, alert_id: str, patch: dict[str, Any]) -> Alert:
        """Apply field changes to an alert and return the stored result.

        Raises:
            AlertNotFoundError: No alert has this id.
        """
        ...

    async def get_alert(self, alert_id: str) -> Alert | None:
        """Return an alert by id."""
        ...

    async def list_alerts(
        self,
        service_name: str | None = None,
        status: AlertStatus | None = None,
        severity: AlertSeverity | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Alert]:
        """Return matching alerts, newest first."""
        ...

    async def cleanup_older_than(self, collection: Collection, cutoff: float) -> int:
        """Delete entries older than cutoff.

        For alerts only resolved alerts whose resolved_at is older than
        cutoff are eligible.

        Returns:
            Number of deleted entries.
        """
        ...


@runtime_checkable
class RosterPort(Protocol):
    """Port for the list of services to probe."""

    async def list(self) -> list[ServiceEndpoint]:
        """Return the services to probe."""
        ...


@runtime_checkable
class NotificationChannel(Protocol):
    """Port for an alert notification channel."""

    name: str

    @property
    def enabled(self) -> bool:
        """True when the channel is switched on and fully configured."""
        ...

    async def send(self, alert: Alert) -> None:
        """Deliver the alert.

        Raises:
            NotificationError: Delivery failed.
        """
        ...
