"""Metric helper functions for creating MetricSample objects."""

import time

from fleetwatch.core.models import MetricSample, MetricType


def counter(
    service_name: str,
    name: str,
    value: float = 1.0,
    labels: dict[str, str] | None = None,
) -> MetricSample:
    """Create a counter metric sample.

    Args:
        service_name: Service the sample belongs to
        name: Metric name (e.g., "network.in")
        value: Counter value (default: 1.0)
        labels: Optional dimension labels

    Returns:
        MetricSample with current timestamp
    """
    return MetricSample(
        service_name=service_name,
        name=name,
        value=value,
        timestamp=time.time(),
        metric_type=MetricType.COUNTER,
        labels=labels or {},
    )


def gauge(
    service_name: str,
    name: str,
    value: float,
    labels: dict[str, str] | None = None,
) -> MetricSample:
    """Create a gauge metric sample.

    Args:
        service_name: Service the sample belongs to
        name: Metric name (e.g., "cpu.usage")
        value: Current gauge value
        labels: Optional dimension labels

    Returns:
        MetricSample with current timestamp
    """
    return MetricSample(
        service_name=service_name,
        name=name,
        value=value,
        timestamp=time.time(),
        metric_type=MetricType.GAUGE,
        labels=labels or {},
    )


def sample(
    service_name: str,
    name: str,
    value: float,
    metric_type: MetricType = MetricType.GAUGE,
    labels: dict[str, str] | None = None,
) -> MetricSample:
    """Create a metric sample of any type with the current timestamp."""
    return MetricSample(
        service_name=service_name,
        name=name,
        value=float(value),
        timestamp=time.time(),
        metric_type=MetricType(metric_type),
        labels=labels or {},
    )
