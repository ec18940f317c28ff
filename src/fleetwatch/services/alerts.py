"""Threshold evaluation and the alert lifecycle.

Each dedup key ``(service_name, alert_type)`` moves through::

    NoAlert -> Active -> Acknowledged -> Resolved
                      \\-----------------^

A new alert is created only when no open (active or acknowledged) alert
exists for its key. Resolution is manual.
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from fleetwatch.core.errors import (
    AlertNotFoundError,
    DuplicateAlertError,
    InvalidTransitionError,
)
from fleetwatch.core.models import Alert, AlertSeverity, AlertStatus, ServiceStatus
from fleetwatch.core.ports import Collection, TelemetryStorePort
from fleetwatch.core.summaries import (
    AlertsSummary,
    AlertTrendPoint,
    TrendPeriod,
    mean,
    summarize_alert_trends,
    summarize_alerts,
)
from fleetwatch.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 300.0


class AlertNotifier(Protocol):
    async def dispatch(self, alert: Alert) -> Any: ...


@dataclass(frozen=True)
class AlertThresholds:
    """Breach levels. Percentages except ``response_time`` (milliseconds)."""

    cpu: float = 80.0
    memory: float = 85.0
    disk: float = 90.0
    response_time: float = 5000.0
    error_rate: float = 10.0


class AlertEvaluator:
    """Evaluates stored telemetry against thresholds and manages alerts.

    Rules run in a fixed order (health, resources, latency, request
    performance). A failing rule is logged and the remaining rules still
    run. Every created alert is handed to the notifier before the next
    rule runs; notifier errors are logged and never abort evaluation.

    Resource and performance rules look at ``service_name``, the service
    the collector samples.
    """

    def __init__(
        self,
        store: TelemetryStorePort,
        notifier: AlertNotifier | None,
        service_name: str,
        thresholds: AlertThresholds | None = None,
        window: float = DEFAULT_WINDOW,
        interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._service_name = service_name
        self._thresholds = thresholds or AlertThresholds()
        self._window = window
        self._clock = clock
        self._task = PeriodicTask("alert-evaluator", self.evaluate, interval)

    @property
    def thresholds(self) -> AlertThresholds:
        return self._thresholds

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def status(self) -> dict[str, Any]:
        return {"running": self._task.running, "interval": self._task.interval}

    # Evaluation

    async def evaluate(self) -> list[Alert]:
        """Run one evaluation cycle.

        Returns:
            Alerts created during this cycle.
        """
        created: list[Alert] = []
        for rule in (
            self._check_health,
            self._check_resources,
            self._check_latency,
            self._check_performance,
        ):
            try:
                created.extend(await rule())
            except Exception:
                logger.exception("Alert rule failed", extra={"rule": rule.__name__})
        if created:
            logger.info(
                "Alert evaluation created alerts", extra={"count": len(created)}
            )
        return created

    async def _check_health(self) -> list[Alert]:
        created = []
        for record in await self._store.latest_health_all():
            name = record.service_name
            if record.status == ServiceStatus.UNHEALTHY:
                alert, new = await self._open_alert(
                    service_name=name,
                    alert_type="service_unhealthy",
                    severity=AlertSeverity.CRITICAL,
                    title=f"Service {name} is unhealthy",
                    description=record.error_message
                    or f"Health check for {name} reported unhealthy",
                    labels={"service_url": record.service_url},
                )
            elif record.status == ServiceStatus.DEGRADED:
                alert, new = await self._open_alert(
                    service_name=name,
                    alert_type="service_degraded",
                    severity=AlertSeverity.HIGH,
                    title=f"Service {name} is degraded",
                    description=f"Health check for {name} reported degraded",
                    labels={"service_url": record.service_url},
                )
            else:
                continue
            if new and alert is not None:
                created.append(alert)
        return created

    async def _check_resources(self) -> list[Alert]:
        created = []
        thresholds = self._thresholds
        for metric_name, alert_type, label, threshold in (
            ("cpu.usage", "cpu_high", "CPU", thresholds.cpu),
            ("memory.usage.percentage", "memory_high", "Memory", thresholds.memory),
            ("disk.usage.percentage", "disk_high", "Disk", thresholds.disk),
        ):
            latest = await self._store.latest_metric(self._service_name, metric_name)
            if latest is None or latest.value <= threshold:
                continue
            alert, new = await self._open_alert(
                service_name=self._service_name,
                alert_type=alert_type,
                severity=AlertSeverity.HIGH,
                title=f"High {label} usage",
                description=(
                    f"{label} usage is {latest.value:.1f}%, "
                    f"above the {threshold:g}% threshold"
                ),
                value=latest.value,
                threshold=threshold,
            )
            if new and alert is not None:
                created.append(alert)
        return created

    async def _check_latency(self) -> list[Alert]:
        now = self._clock()
        samples = await self._store.query_metrics_window(
            self._service_name, "response_time", now - self._window, now
        )
        if not samples:
            return []
        average = mean([s.value for s in samples])
        threshold = self._thresholds.response_time
        if average <= threshold:
            return []
        alert, new = await self._open_alert(
            service_name=self._service_name,
            alert_type="response_time_high",
            severity=AlertSeverity.MEDIUM,
            title="High response time",
            description=(
                f"Average response time is {average:.0f}ms, "
                f"above the {threshold:g}ms threshold"
            ),
            value=average,
            threshold=threshold,
        )
        return [alert] if new and alert is not None else []

    async def _check_performance(self) -> list[Alert]:
        now = self._clock()
        samples = await self._store.query_performance_window(
            self._service_name, now - self._window, now
        )
        if not samples:
            return []

        created = []
        error_rate = sum(1 for s in samples if s.is_error) / len(samples) * 100
        if error_rate > self._thresholds.error_rate:
            alert, new = await self._open_alert(
                service_name=self._service_name,
                alert_type="error_rate_high",
                severity=AlertSeverity.HIGH,
                title="High error rate",
                description=(
                    f"Error rate is {error_rate:.1f}%, "
                    f"above the {self._thresholds.error_rate:g}% threshold"
                ),
                value=error_rate,
                threshold=self._thresholds.error_rate,
            )
            if new and alert is not None:
                created.append(alert)

        average = mean([s.response_time for s in samples])
        if average > self._thresholds.response_time:
            alert, new = await self._open_alert(
                service_name=self._service_name,
                alert_type="performance_response_time_high",
                severity=AlertSeverity.MEDIUM,
                title="High request latency",
                description=(
                    f"Average request time is {average:.0f}ms, "
                    f"above the {self._thresholds.response_time:g}ms threshold"
                ),
                value=average,
                threshold=self._thresholds.response_time,
            )
            if new and alert is not None:
                created.append(alert)
        return created

    # Lifecycle

    async def _open_alert(
        self,
        service_name: str,
        alert_type: str,
        severity: AlertSeverity,
        title: str,
        description: str,
        value: float | None = None,
        threshold: float | None = None,
        labels: dict[str, str] | None = None,
    ) -> tuple[Alert | None, bool]:
        """Create an alert unless one is already open for the key.

        Returns:
            The open alert for the key and whether it was created by this call.
        """
        existing = await self._store.find_active_alert(service_name, alert_type)
        if existing is not None:
            logger.debug(
                "Open alert already exists",
                extra={"alert_id": existing.id, "alert_type": alert_type},
            )
            return existing, False

        alert = Alert(
            id=str(uuid.uuid4()),
            service_name=service_name,
            alert_type=alert_type,
            severity=severity,
            status=AlertStatus.ACTIVE,
            title=title,
            description=description,
            created_at=self._clock(),
            value=value,
            threshold=threshold,
            labels=labels or {},
        )
        try:
            await self._store.create_alert(alert)
        except DuplicateAlertError:
            # Another writer opened the key between lookup and insert.
            return await self._store.find_active_alert(service_name, alert_type), False

        logger.warning(
            "Alert created",
            extra={
                "alert_id": alert.id,
                "service": service_name,
                "alert_type": alert_type,
                "severity": str(severity),
            },
        )
        await self._notify(alert)
        return alert, True

    async def _notify(self, alert: Alert) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.dispatch(alert)
        except Exception:
            logger.exception("Alert dispatch failed", extra={"alert_id": alert.id})

    async def create_alert(
        self,
        service_name: str,
        alert_type: str,
        severity: AlertSeverity,
        title: str,
        description: str,
        value: float | None = None,
        threshold: float | None = None,
        labels: dict[str, str] | None = None,
    ) -> Alert | None:
        """Raise an alert from outside the evaluation cycle.

        Deduplicated and dispatched like evaluated alerts. Returns the open
        alert for the key, which is the existing one on a dedup hit.
        """
        alert, _ = await self._open_alert(
            service_name=service_name,
            alert_type=alert_type,
            severity=AlertSeverity(severity),
            title=title,
            description=description,
            value=value,
            threshold=threshold,
            labels=labels,
        )
        return alert

    async def _require(self, alert_id: str) -> Alert:
        alert = await self._store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def acknowledge(self, alert_id: str, acknowledged_by: str) -> Alert:
        """Move an active alert to acknowledged.

        Raises:
            AlertNotFoundError: No alert has this id.
            InvalidTransitionError: The alert is not active.
        """
        alert = await self._require(alert_id)
        if alert.status != AlertStatus.ACTIVE:
            raise InvalidTransitionError(
                f"cannot acknowledge alert {alert_id} in status {alert.status}"
            )
        updated = await self._store.update_alert(
            alert_id,
            {
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_at": self._clock(),
                "acknowledged_by": acknowledged_by,
            },
        )
        logger.info(
            "Alert acknowledged",
            extra={"alert_id": alert_id, "acknowledged_by": acknowledged_by},
        )
        return updated

    async def resolve(self, alert_id: str, resolved_by: str | None = None) -> Alert:
        """Move an open alert to resolved, freeing its dedup key.

        Raises:
            AlertNotFoundError: No alert has this id.
            InvalidTransitionError: The alert is not open.
        """
        alert = await self._require(alert_id)
        if not alert.is_open:
            raise InvalidTransitionError(
                f"cannot resolve alert {alert_id} in status {alert.status}"
            )
        updated = await self._store.update_alert(
            alert_id,
            {
                "status": AlertStatus.RESOLVED,
                "resolved_at": self._clock(),
                "resolved_by": resolved_by,
            },
        )
        logger.info(
            "Alert resolved", extra={"alert_id": alert_id, "resolved_by": resolved_by}
        )
        return updated

    # Queries

    async def get_active_alerts(self, limit: int = 100, offset: int = 0) -> list[Alert]:
        return await self._store.list_alerts(
            status=AlertStatus.ACTIVE, limit=limit, offset=offset
        )

    async def get_critical_alerts(self, limit: int = 100) -> list[Alert]:
        return await self._store.list_alerts(
            status=AlertStatus.ACTIVE, severity=AlertSeverity.CRITICAL, limit=limit
        )

    async def get_alerts_by_service(
        self, service_name: str, limit: int = 100
    ) -> list[Alert]:
        return await self._store.list_alerts(service_name=service_name, limit=limit)

    async def get_alerts_summary(
        self, service_name: str | None = None
    ) -> AlertsSummary:
        alerts = await self._store.list_alerts(service_name=service_name)
        return summarize_alerts(alerts)

    async def get_alert_trends(
        self,
        start: float,
        end: float,
        service_name: str | None = None,
        group_by: TrendPeriod | str = TrendPeriod.DAY,
    ) -> list[AlertTrendPoint]:
        """Alert counts per period and severity for alerts created in [start, end]."""
        if start > end:
            raise ValueError("start must not be after end")
        alerts = await self._store.list_alerts(service_name=service_name)
        in_range = [a for a in alerts if start <= a.created_at <= end]
        return summarize_alert_trends(in_range, TrendPeriod(group_by))

    async def cleanup_old_alerts(self, days_to_keep: int = 30) -> int:
        """Delete resolved alerts resolved more than ``days_to_keep`` ago."""
        cutoff = self._clock() - days_to_keep * 86400
        deleted = await self._store.cleanup_older_than(Collection.ALERTS, cutoff)
        logger.info(
            "Old alerts cleaned up",
            extra={"days_to_keep": days_to_keep, "deleted": deleted},
        )
        return deleted
