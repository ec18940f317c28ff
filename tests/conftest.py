"""Shared test fixtures for all test modules."""

import time
from collections.abc import AsyncGenerator, Callable, Sequence
from pathlib import Path
from typing import Any

import httpx
import pytest

from fleetwatch.adapters.frameworks.asgi import Receive, Scope, Send
from fleetwatch.adapters.storage import InMemoryTelemetryStore, SQLiteTelemetryStore
from fleetwatch.core.errors import NotificationError, StoreError
from fleetwatch.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    MetricSample,
    PerformanceSample,
)


class FlakyStore(InMemoryTelemetryStore):
    """In-memory store whose batch writes fail while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False
        self.write_calls = 0

    async def insert_metrics(self, batch: Sequence[MetricSample]) -> int:
        self.write_calls += 1
        if self.failing:
            raise StoreError("store unavailable")
        return await super().insert_metrics(batch)

    async def insert_performance(self, batch: Sequence[PerformanceSample]) -> int:
        self.write_calls += 1
        if self.failing:
            raise StoreError("store unavailable")
        return await super().insert_performance(batch)

    @property
    def metrics(self) -> list[MetricSample]:
        return list(self._metrics)

    @property
    def performance(self) -> list[PerformanceSample]:
        return list(self._performance)


class RecordingChannel:
    """Notification channel fake that remembers what it was sent."""

    def __init__(self, name: str, enabled: bool = True, fail: bool = False) -> None:
        self.name = name
        self._enabled = enabled
        self.fail = fail
        self.sent: list[Alert] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send(self, alert: Alert) -> None:
        if self.fail:
            raise NotificationError(f"{self.name} is down")
        self.sent.append(alert)


@pytest.fixture
def store() -> InMemoryTelemetryStore:
    """Fresh in-memory telemetry store."""
    return InMemoryTelemetryStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    """In-memory store with switchable write failures."""
    return FlakyStore()


@pytest.fixture
def make_channel() -> Callable[..., RecordingChannel]:
    """Factory for recording notification channels."""
    return RecordingChannel


@pytest.fixture
def telemetry_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for SQLite store tests."""
    return str(tmp_path / "telemetry.db")


@pytest.fixture
async def sqlite_store(
    telemetry_db_path: str,
) -> AsyncGenerator[SQLiteTelemetryStore, None]:
    """File-backed SQLite store, closed after the test."""
    storage = SQLiteTelemetryStore(telemetry_db_path)
    yield storage
    await storage.close()


@pytest.fixture(params=["memory", "sqlite"])
async def any_store(
    request: pytest.FixtureRequest, telemetry_db_path: str
) -> AsyncGenerator[Any, None]:
    """Run a test against both store adapters."""
    if request.param == "memory":
        yield InMemoryTelemetryStore()
        return
    storage = SQLiteTelemetryStore(telemetry_db_path)
    yield storage
    await storage.close()


@pytest.fixture
def make_metric() -> Callable[..., MetricSample]:
    """Factory for metric samples with sensible defaults."""

    def _make(
        name: str = "cpu.usage",
        value: float = 42.0,
        service_name: str = "orders",
        timestamp: float | None = None,
        **kwargs: Any,
    ) -> MetricSample:
        return MetricSample(
            service_name=service_name,
            name=name,
            value=value,
            timestamp=time.time() if timestamp is None else timestamp,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_request_sample() -> Callable[..., PerformanceSample]:
    """Factory for performance samples with sensible defaults."""

    def _make(
        status_code: int = 200,
        response_time: float = 120.0,
        endpoint: str = "/orders",
        service_name: str = "orders",
        timestamp: float | None = None,
        **kwargs: Any,
    ) -> PerformanceSample:
        values: dict[str, Any] = {
            "method": "GET",
            "request_size": 0,
            "response_size": 512,
        }
        values.update(kwargs)
        return PerformanceSample(
            service_name=service_name,
            endpoint=endpoint,
            response_time=response_time,
            status_code=status_code,
            timestamp=time.time() if timestamp is None else timestamp,
            **values,
        )

    return _make


@pytest.fixture
def make_alert() -> Callable[..., Alert]:
    """Factory for alerts with sensible defaults."""
    counter = iter(range(1, 10_000))

    def _make(
        service_name: str = "orders",
        alert_type: str = "cpu_high",
        severity: AlertSeverity = AlertSeverity.HIGH,
        status: AlertStatus = AlertStatus.ACTIVE,
        created_at: float | None = None,
        **kwargs: Any,
    ) -> Alert:
        return Alert(
            id=kwargs.pop("id", f"alert-{next(counter)}"),
            service_name=service_name,
            alert_type=alert_type,
            severity=severity,
            status=status,
            title=kwargs.pop("title", "High CPU usage"),
            description=kwargs.pop("description", "CPU usage is 95.0%"),
            created_at=time.time() if created_at is None else created_at,
            **kwargs,
        )

    return _make


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client
