"""Framework adapters."""

from fleetwatch.adapters.frameworks.asgi import RequestMonitoringMiddleware

__all__ = ["RequestMonitoringMiddleware"]
