"""fleetwatch - telemetry ingestion and alerting for a fleet of services."""

from fleetwatch.adapters.frameworks.asgi import RequestMonitoringMiddleware
from fleetwatch.adapters.storage import InMemoryTelemetryStore, SQLiteTelemetryStore
from fleetwatch.config import Settings, load_settings
from fleetwatch.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    HealthRecord,
    MetricSample,
    MetricType,
    PerformanceSample,
    ServiceEndpoint,
    ServiceStatus,
)
from fleetwatch.monitor import Monitor

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    "HealthRecord",
    "InMemoryTelemetryStore",
    "MetricSample",
    "MetricType",
    "Monitor",
    "PerformanceSample",
    "RequestMonitoringMiddleware",
    "SQLiteTelemetryStore",
    "ServiceEndpoint",
    "ServiceStatus",
    "Settings",
    "load_settings",
]
