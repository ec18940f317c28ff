"""Core domain models for telemetry and alerting data."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse


class MetricType(StrEnum):
    """Kind of a metric sample."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"


class ServiceStatus(StrEnum):
    """Health status reported by (or inferred for) a service."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"
    MAINTENANCE = "maintenance"


class AlertSeverity(StrEnum):
    """Severity tier, used for classification and channel routing."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(StrEnum):
    """Lifecycle status of an alert."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


# Statuses that occupy a dedup key.
OPEN_ALERT_STATUSES = frozenset({AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED})


@dataclass(frozen=True)
class MetricSample:
    """A single metric measurement for a service.

    Attributes:
        service_name: Service the measurement belongs to.
        name: Metric name (e.g., cpu.usage).
        value: The metric value.
        timestamp: Unix timestamp in seconds.
        metric_type: Counter, gauge, histogram or summary.
        labels: Key-value pairs for metric dimensions.
    """

    service_name: str
    name: str
    value: float
    timestamp: float
    metric_type: MetricType = MetricType.GAUGE
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PerformanceSample:
    """Timing and size of one completed inbound request.

    Attributes:
        service_name: Service that handled the request.
        endpoint: Request path.
        method: HTTP method.
        response_time: Time to respond in milliseconds.
        status_code: HTTP response status.
        request_size: Request body size in bytes.
        response_size: Response body size in bytes.
        timestamp: Unix timestamp in seconds.
        user_agent: Client User-Agent header, if sent.
        ip_address: Client address, if known.
    """

    service_name: str
    endpoint: str
    method: str
    response_time: float
    status_code: int
    request_size: int
    response_size: int
    timestamp: float
    user_agent: str | None = None
    ip_address: str | None = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


@dataclass(frozen=True)
class HealthRecord:
    """Outcome of a single health probe.

    Attributes:
        service_name: Probed service.
        service_url: URL the probe requested.
        status: Mapped service status.
        last_checked: Unix timestamp of probe completion.
        response_time: Round-trip time in milliseconds, if measured.
        error_message: Transport error description for failed probes.
        metadata: Details reported by the service or about the failure.
    """

    service_name: str
    service_url: str
    status: ServiceStatus
    last_checked: float
    response_time: float | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Alert:
    """A raised alert.

    Alerts are values: status transitions produce a new Alert via
    ``dataclasses.replace`` which the store persists.
    """

    id: str
    service_name: str
    alert_type: str
    severity: AlertSeverity
    status: AlertStatus
    title: str
    description: str
    created_at: float
    value: float | None = None
    threshold: float | None = None
    labels: dict[str, str] = field(default_factory=dict)
    resolved_at: float | None = None
    resolved_by: str | None = None
    acknowledged_at: float | None = None
    acknowledged_by: str | None = None

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.service_name, self.alert_type)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES


def is_http_url(value: str) -> bool:
    """True for an absolute http(s) URL with a host and a valid port."""
    try:
        parsed = urlparse(value)
        parsed.port
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


@dataclass(frozen=True)
class ServiceEndpoint:
    """A service the health probe should check."""

    name: str
    url: str
    port: int | None = None
