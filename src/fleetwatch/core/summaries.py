"""Aggregations behind the read-only query operations.

Pure functions over already-fetched records, so adapters only need
simple range queries.
"""

from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from fleetwatch.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    HealthRecord,
    MetricSample,
    PerformanceSample,
    ServiceStatus,
)

TOP_ENDPOINTS_LIMIT = 10

_TREND_SEVERITIES = (
    AlertSeverity.LOW,
    AlertSeverity.MEDIUM,
    AlertSeverity.HIGH,
    AlertSeverity.CRITICAL,
)


class TrendPeriod(StrEnum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


@dataclass(frozen=True)
class EndpointStats:
    endpoint: str
    count: int
    avg_response_time: float


@dataclass(frozen=True)
class PerformanceSummary:
    """Request statistics for one service over a time window.

    Attributes:
        error_rate: Percentage (0-100) of requests with status >= 400.
        throughput: Requests per second over the window.
    """

    service_name: str
    total_requests: int
    average_response_time: float
    min_response_time: float
    max_response_time: float
    error_rate: float
    throughput: float
    status_codes: dict[int, int] = field(default_factory=dict)
    top_endpoints: list[EndpointStats] = field(default_factory=list)


@dataclass(frozen=True)
class HealthSummary:
    """Probe statistics for one service.

    Attributes:
        uptime: Percentage (0-100) of checks that were healthy.
    """

    service_name: str
    total_checks: int
    healthy_checks: int
    unhealthy_checks: int
    degraded_checks: int
    average_response_time: float
    uptime: float
    last_checked: float | None


@dataclass(frozen=True)
class MetricsSummary:
    service_name: str
    total_metrics: int
    metric_names: list[str]
    average_values: dict[str, float]
    last_updated: float | None


@dataclass(frozen=True)
class AlertsSummary:
    total: int = 0
    active: int = 0
    acknowledged: int = 0
    resolved: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


@dataclass(frozen=True)
class AlertTrendPoint:
    """Alerts of one severity created within one period."""

    period: str
    severity: AlertSeverity
    count: int


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    return sum(values) / len(values) if values else 0.0


def summarize_performance(
    service_name: str,
    samples: Sequence[PerformanceSample],
    start: float,
    end: float,
) -> PerformanceSummary:
    """Summarize performance samples collected between start and end."""
    total = len(samples)
    response_times = [s.response_time for s in samples]
    errors = sum(1 for s in samples if s.is_error)
    elapsed = end - start

    per_endpoint: dict[str, list[float]] = defaultdict(list)
    for s in samples:
        per_endpoint[s.endpoint].append(s.response_time)
    top = sorted(
        (
            EndpointStats(endpoint=ep, count=len(times), avg_response_time=mean(times))
            for ep, times in per_endpoint.items()
        ),
        key=lambda stats: stats.count,
        reverse=True,
    )[:TOP_ENDPOINTS_LIMIT]

    return PerformanceSummary(
        service_name=service_name,
        total_requests=total,
        average_response_time=mean(response_times),
        min_response_time=min(response_times, default=0.0),
        max_response_time=max(response_times, default=0.0),
        error_rate=(errors / total) * 100 if total else 0.0,
        throughput=total / elapsed if elapsed > 0 else 0.0,
        status_codes=dict(Counter(s.status_code for s in samples)),
        top_endpoints=top,
    )


def summarize_health(
    service_name: str, records: Sequence[HealthRecord]
) -> HealthSummary:
    """Summarize a service's health records."""
    statuses = Counter(r.status for r in records)
    timed = [r.response_time for r in records if r.response_time is not None]
    total = len(records)
    healthy = statuses[ServiceStatus.HEALTHY]
    return HealthSummary(
        service_name=service_name,
        total_checks=total,
        healthy_checks=healthy,
        unhealthy_checks=statuses[ServiceStatus.UNHEALTHY],
        degraded_checks=statuses[ServiceStatus.DEGRADED],
        average_response_time=mean(timed),
        uptime=(healthy / total) * 100 if total else 0.0,
        last_checked=max((r.last_checked for r in records), default=None),
    )


def summarize_metrics(
    service_name: str, samples: Sequence[MetricSample]
) -> MetricsSummary:
    """Group a service's samples by metric name and average each group."""
    by_name: dict[str, list[float]] = defaultdict(list)
    for s in samples:
        by_name[s.name].append(s.value)
    return MetricsSummary(
        service_name=service_name,
        total_metrics=len(samples),
        metric_names=sorted(by_name),
        average_values={name: mean(values) for name, values in by_name.items()},
        last_updated=max((s.timestamp for s in samples), default=None),
    )


def summarize_alerts(alerts: Sequence[Alert]) -> AlertsSummary:
    """Count alerts by status and severity."""
    statuses = Counter(a.status for a in alerts)
    severities = Counter(a.severity for a in alerts)
    return AlertsSummary(
        total=len(alerts),
        active=statuses[AlertStatus.ACTIVE],
        acknowledged=statuses[AlertStatus.ACKNOWLEDGED],
        resolved=statuses[AlertStatus.RESOLVED],
        critical=severities[AlertSeverity.CRITICAL],
        high=severities[AlertSeverity.HIGH],
        medium=severities[AlertSeverity.MEDIUM],
        low=severities[AlertSeverity.LOW],
    )


def trend_period(timestamp: float, group_by: TrendPeriod) -> str:
    """Label of the UTC period holding ``timestamp``.

    Hours render as ``2024-05-01T13:00:00Z``; days and weeks as the date
    they start on. Weeks start on Monday.
    """
    moment = datetime.fromtimestamp(timestamp, UTC)
    if group_by == TrendPeriod.HOUR:
        return moment.strftime("%Y-%m-%dT%H:00:00Z")
    day = moment.date()
    if group_by == TrendPeriod.WEEK:
        day -= timedelta(days=day.weekday())
    return day.isoformat()


def summarize_alert_trends(
    alerts: Sequence[Alert], group_by: TrendPeriod = TrendPeriod.DAY
) -> list[AlertTrendPoint]:
    """Count alerts per creation period and severity.

    Every period that holds at least one alert reports all four
    severities, zero counts included. Points are ordered by period, then
    from low to critical severity.
    """
    group_by = TrendPeriod(group_by)
    counts: dict[str, Counter[AlertSeverity]] = defaultdict(Counter)
    for alert in alerts:
        counts[trend_period(alert.created_at, group_by)][alert.severity] += 1
    return [
        AlertTrendPoint(period, severity, counts[period][severity])
        for period in sorted(counts)
        for severity in _TREND_SEVERITIES
    ]
