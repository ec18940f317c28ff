"""In-memory telemetry store."""

import dataclasses
from collections.abc import Sequence
from typing import Any

from fleetwatch.core.errors import AlertNotFoundError, DuplicateAlertError
from fleetwatch.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    HealthRecord,
    MetricSample,
    PerformanceSample,
)
from fleetwatch.core.ports import Collection

_ALERT_FIELDS = frozenset(f.name for f in dataclasses.fields(Alert))


class InMemoryTelemetryStore:
    """In-memory implementation of TelemetryStorePort.

    Keeps every collection in a list. Suitable for testing and
    single-process deployments where persistence is not required.
    Enforces the same one-open-alert-per-key rule as the SQLite store.
    """

    def __init__(self) -> None:
        self._metrics: list[MetricSample] = []
        self._performance: list[PerformanceSample] = []
        self._health: list[HealthRecord] = []
        self._alerts: dict[str, Alert] = {}

    async def insert_metrics(self, batch: Sequence[MetricSample]) -> int:
        """Write a batch of metric samples."""
        self._metrics.extend(batch)
        return len(batch)

    async def insert_performance(self, batch: Sequence[PerformanceSample]) -> int:
        """Write a batch of performance samples."""
        self._performance.extend(batch)
        return len(batch)

    async def insert_health(self, record: HealthRecord) -> None:
        """Append a health record."""
        self._health.append(record)

    async def latest_health(self, service_name: str) -> HealthRecord | None:
        """Return the most recent health record for a service."""
        records = [r for r in self._health if r.service_name == service_name]
        return max(records, key=lambda r: r.last_checked, default=None)

    async def latest_health_all(self) -> list[HealthRecord]:
        """Return the most recent health record of every known service."""
        latest: dict[str, HealthRecord] = {}
        for record in self._health:
            current = latest.get(record.service_name)
            if current is None or record.last_checked >= current.last_checked:
                latest[record.service_name] = record
        return sorted(latest.values(), key=lambda r: r.service_name)

    async def query_health_window(
        self, service_name: str, start: float, end: float
    ) -> list[HealthRecord]:
        """Return health records in the window, newest first."""
        records = [
            r
            for r in self._health
            if r.service_name == service_name and start <= r.last_checked <= end
        ]
        return sorted(records, key=lambda r: r.last_checked, reverse=True)

    async def latest_metric(self, service_name: str, name: str) -> MetricSample | None:
        """Return the most recent sample of a metric."""
        samples = [
            s
            for s in self._metrics
            if s.service_name == service_name and s.name == name
        ]
        return max(samples, key=lambda s: s.timestamp, default=None)

    async def query_metrics_window(
        self,
        service_name: str,
        name: str | None,
        start: float,
        end: float,
    ) -> list[MetricSample]:
        """Return metric samples in the window, oldest first."""
        samples = [
            s
            for s in self._metrics
            if s.service_name == service_name
            and (name is None or s.name == name)
            and start <= s.timestamp <= end
        ]
        return sorted(samples, key=lambda s: s.timestamp)

    async def query_performance_window(
        self,
        service_name: str,
        start: float,
        end: float,
        endpoint: str | None = None,
    ) -> list[PerformanceSample]:
        """Return performance samples in the window, oldest first."""
        samples = [
            s
            for s in self._performance
            if s.service_name == service_name
            and (endpoint is None or s.endpoint == endpoint)
            and start <= s.timestamp <= end
        ]
        return sorted(samples, key=lambda s: s.timestamp)

    async def find_active_alert(
        self, service_name: str, alert_type: str
    ) -> Alert | None:
        """Return the open alert for a dedup key."""
        for alert in self._alerts.values():
            if alert.dedup_key == (service_name, alert_type) and alert.is_open:
                return alert
        return None

    async def create_alert(self, alert: Alert) -> Alert:
        """Persist a new alert, rejecting a second open alert for the key."""
        if alert.is_open and await self.find_active_alert(*alert.dedup_key):
            raise DuplicateAlertError(alert.service_name, alert.alert_type)
        self._alerts[alert.id] = alert
        return alert

    async def update_alert(self, alert_id: str, patch: dict[str, Any]) -> Alert:
        """Apply field changes to an alert."""
        current = self._alerts.get(alert_id)
        if current is None:
            raise AlertNotFoundError(alert_id)
        unknown = set(patch) - _ALERT_FIELDS
        if unknown:
            raise ValueError(f"unknown alert fields: {sorted(unknown)}")
        updated = dataclasses.replace(current, **patch)
        self._alerts[alert_id] = updated
        return updated

    async def get_alert(self, alert_id: str) -> Alert | None:
        """Return an alert by id."""
        return self._alerts.get(alert_id)

    async def list_alerts(
        self,
        service_name: str | None = None,
        status: AlertStatus | None = None,
        severity: AlertSeverity | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Alert]:
        """Return matching alerts, newest first."""
        alerts = [
            a
            for a in self._alerts.values()
            if (service_name is None or a.service_name == service_name)
            and (status is None or a.status == status)
            and (severity is None or a.severity == severity)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return alerts[offset:end]

    async def cleanup_older_than(self, collection: Collection, cutoff: float) -> int:
        """Delete entries older than cutoff from a collection."""
        if collection == Collection.METRICS:
            before = len(self._metrics)
            self._metrics = [s for s in self._metrics if s.timestamp >= cutoff]
            return before - len(self._metrics)
        if collection == Collection.PERFORMANCE:
            before = len(self._performance)
            self._performance = [s for s in self._performance if s.timestamp >= cutoff]
            return before - len(self._performance)
        if collection == Collection.HEALTH:
            before = len(self._health)
            self._health = [r for r in self._health if r.last_checked >= cutoff]
            return before - len(self._health)
        expired = [
            a.id
            for a in self._alerts.values()
            if a.status == AlertStatus.RESOLVED
            and a.resolved_at is not None
            and a.resolved_at < cutoff
        ]
        for alert_id in expired:
            del self._alerts[alert_id]
        return len(expired)
