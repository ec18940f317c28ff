"""Storage adapters implementing TelemetryStorePort."""

from fleetwatch.adapters.storage.in_memory import InMemoryTelemetryStore
from fleetwatch.adapters.storage.sqlite import SQLiteTelemetryStore

__all__ = [
    "InMemoryTelemetryStore",
    "SQLiteTelemetryStore",
]
