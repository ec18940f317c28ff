"""Application services: sink, collector, health probe, alerting."""

from fleetwatch.services.alerts import AlertEvaluator, AlertThresholds
from fleetwatch.services.collector import MetricsCollector
from fleetwatch.services.health import HealthProbe
from fleetwatch.services.notifications import DispatchReport, NotificationDispatcher
from fleetwatch.services.scheduler import PeriodicTask
from fleetwatch.services.sink import MetricSink, SinkStats

__all__ = [
    "AlertEvaluator",
    "AlertThresholds",
    "DispatchReport",
    "HealthProbe",
    "MetricSink",
    "MetricsCollector",
    "NotificationDispatcher",
    "PeriodicTask",
    "SinkStats",
]
