"""Contract tests run against every TelemetryStorePort adapter."""

import asyncio
import dataclasses

import pytest

from fleetwatch.core.errors import AlertNotFoundError, DuplicateAlertError
from fleetwatch.core.models import (
    AlertSeverity,
    AlertStatus,
    HealthRecord,
    ServiceStatus,
)
from fleetwatch.core.ports import Collection

pytestmark = [pytest.mark.storage, pytest.mark.tier(2)]


def _health(service: str, status: ServiceStatus, checked: float) -> HealthRecord:
    return HealthRecord(
        service_name=service,
        service_url=f"http://{service}/health",
        status=status,
        last_checked=checked,
        response_time=12.5,
        metadata={"version": "1.2.0", "checks": {"db": "ok"}},
    )


class TestSampleWrites:
    """Batch writes and window queries."""

    async def test_insert_metrics_returns_count(self, any_store, make_metric) -> None:
        batch = [make_metric(value=float(i), timestamp=100.0 + i) for i in range(3)]

        assert await any_store.insert_metrics(batch) == 3

    async def test_insert_empty_batch(self, any_store) -> None:
        assert await any_store.insert_metrics([]) == 0
        assert await any_store.insert_performance([]) == 0

    async def test_metrics_window_is_inclusive_and_ordered(
        self, any_store, make_metric
    ) -> None:
        await any_store.insert_metrics(
            [
                make_metric(value=3.0, timestamp=300.0),
                make_metric(value=1.0, timestamp=100.0),
                make_metric(value=2.0, timestamp=200.0),
                make_metric(value=9.0, timestamp=400.0),
            ]
        )

        result = await any_store.query_metrics_window(
            "orders", "cpu.usage", 100.0, 300.0
        )

        assert [s.value for s in result] == [1.0, 2.0, 3.0]

    async def test_metrics_window_filters_name_and_service(
        self, any_store, make_metric
    ) -> None:
        await any_store.insert_metrics(
            [
                make_metric("cpu.usage", 1.0, timestamp=100.0),
                make_metric("memory.used", 2.0, timestamp=100.0),
                make_metric("cpu.usage", 3.0, service_name="billing", timestamp=100.0),
            ]
        )

        by_name = await any_store.query_metrics_window(
            "orders", "cpu.usage", 0.0, 200.0
        )
        all_names = await any_store.query_metrics_window("orders", None, 0.0, 200.0)

        assert [s.value for s in by_name] == [1.0]
        assert sorted(s.name for s in all_names) == ["cpu.usage", "memory.used"]

    async def test_labels_round_trip(self, any_store, make_metric) -> None:
        sample = make_metric(timestamp=100.0, labels={"host": "web-1"})
        await any_store.insert_metrics([sample])

        result = await any_store.query_metrics_window("orders", None, 0.0, 200.0)

        assert result == [sample]

    async def test_latest_metric(self, any_store, make_metric) -> None:
        await any_store.insert_metrics(
            [
                make_metric(value=10.0, timestamp=100.0),
                make_metric(value=95.0, timestamp=200.0),
            ]
        )

        latest = await any_store.latest_metric("orders", "cpu.usage")

        assert latest is not None
        assert latest.value == 95.0
        assert await any_store.latest_metric("orders", "missing") is None

    async def test_performance_window_with_endpoint_filter(
        self, any_store, make_request_sample
    ) -> None:
        await any_store.insert_performance(
            [
                make_request_sample(endpoint="/a", timestamp=100.0),
                make_request_sample(endpoint="/b", timestamp=110.0, user_agent="curl"),
            ]
        )

        everything = await any_store.query_performance_window("orders", 0.0, 200.0)
        only_b = await any_store.query_performance_window(
            "orders", 0.0, 200.0, endpoint="/b"
        )

        assert [s.endpoint for s in everything] == ["/a", "/b"]
        assert len(only_b) == 1
        assert only_b[0].user_agent == "curl"


class TestHealthRecords:
    """Health record queries."""

    async def test_latest_health_per_service(self, any_store) -> None:
        await any_store.insert_health(_health("orders", ServiceStatus.HEALTHY, 100.0))
        await any_store.insert_health(_health("orders", ServiceStatus.DEGRADED, 200.0))
        await any_store.insert_health(
            _health("billing", ServiceStatus.UNHEALTHY, 150.0)
        )

        latest = await any_store.latest_health_all()

        assert [(r.service_name, r.status) for r in latest] == [
            ("billing", ServiceStatus.UNHEALTHY),
            ("orders", ServiceStatus.DEGRADED),
        ]
        orders = await any_store.latest_health("orders")
        assert orders is not None
        assert orders.metadata == {"version": "1.2.0", "checks": {"db": "ok"}}

    async def test_latest_health_unknown_service(self, any_store) -> None:
        assert await any_store.latest_health("nobody") is None

    async def test_health_window_newest_first(self, any_store) -> None:
        for checked in (100.0, 200.0, 300.0):
            await any_store.insert_health(
                _health("orders", ServiceStatus.HEALTHY, checked)
            )

        records = await any_store.query_health_window("orders", 150.0, 300.0)

        assert [r.last_checked for r in records] == [300.0, 200.0]


class TestAlerts:
    """Alert persistence and the one-open-alert-per-key rule."""

    async def test_create_and_get(self, any_store, make_alert) -> None:
        alert = make_alert(value=95.0, threshold=80.0, labels={"host": "a"})

        await any_store.create_alert(alert)

        assert await any_store.get_alert(alert.id) == alert

    async def test_find_active_alert_matches_open_statuses(
        self, any_store, make_alert
    ) -> None:
        alert = make_alert(status=AlertStatus.ACKNOWLEDGED)
        await any_store.create_alert(alert)

        found = await any_store.find_active_alert("orders", "cpu_high")

        assert found == alert

    async def test_find_active_alert_ignores_resolved(
        self, any_store, make_alert
    ) -> None:
        await any_store.create_alert(make_alert(status=AlertStatus.RESOLVED))

        assert await any_store.find_active_alert("orders", "cpu_high") is None

    async def test_second_open_alert_for_key_is_rejected(
        self, any_store, make_alert
    ) -> None:
        await any_store.create_alert(make_alert())

        with pytest.raises(DuplicateAlertError):
            await any_store.create_alert(make_alert())

    async def test_concurrent_creates_leave_one_open_alert(
        self, any_store, make_alert
    ) -> None:
        """Racing creators cannot both open an alert for the same key."""
        results = await asyncio.gather(
            *(any_store.create_alert(make_alert()) for _ in range(5)),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, DuplicateAlertError)]
        assert len(created) == 1
        assert len(rejected) == 4

    async def test_new_alert_allowed_after_resolution(
        self, any_store, make_alert
    ) -> None:
        first = make_alert()
        await any_store.create_alert(first)
        await any_store.update_alert(
            first.id, {"status": AlertStatus.RESOLVED, "resolved_at": 10.0}
        )

        second = await any_store.create_alert(make_alert())

        assert (await any_store.find_active_alert("orders", "cpu_high")) == second

    async def test_update_alert(self, any_store, make_alert) -> None:
        alert = make_alert()
        await any_store.create_alert(alert)

        updated = await any_store.update_alert(
            alert.id,
            {
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_at": 50.0,
                "acknowledged_by": "oncall",
            },
        )

        expected = dataclasses.replace(
            alert,
            status=AlertStatus.ACKNOWLEDGED,
            acknowledged_at=50.0,
            acknowledged_by="oncall",
        )
        assert updated == expected
        assert await any_store.get_alert(alert.id) == expected

    async def test_update_missing_alert(self, any_store) -> None:
        with pytest.raises(AlertNotFoundError):
            await any_store.update_alert("nope", {"status": AlertStatus.RESOLVED})

    async def test_update_rejects_unknown_field(self, any_store, make_alert) -> None:
        alert = make_alert()
        await any_store.create_alert(alert)

        with pytest.raises(ValueError):
            await any_store.update_alert(alert.id, {"colour": "red"})

    async def test_list_alerts_filters_and_pages(self, any_store, make_alert) -> None:
        await any_store.create_alert(
            make_alert(alert_type="a", severity=AlertSeverity.CRITICAL, created_at=1.0)
        )
        await any_store.create_alert(
            make_alert(alert_type="b", severity=AlertSeverity.HIGH, created_at=2.0)
        )
        await any_store.create_alert(
            make_alert(alert_type="c", service_name="billing", created_at=3.0)
        )

        newest_first = await any_store.list_alerts()
        critical = await any_store.list_alerts(severity=AlertSeverity.CRITICAL)
        orders = await any_store.list_alerts(service_name="orders")
        page = await any_store.list_alerts(limit=1, offset=1)

        assert [a.alert_type for a in newest_first] == ["c", "b", "a"]
        assert [a.alert_type for a in critical] == ["a"]
        assert [a.alert_type for a in orders] == ["b", "a"]
        assert [a.alert_type for a in page] == ["b"]


class TestCleanup:
    """Age-based retention."""

    async def test_cleanup_time_series(
        self, any_store, make_metric, make_request_sample
    ) -> None:
        await any_store.insert_metrics(
            [make_metric(timestamp=100.0), make_metric(timestamp=500.0)]
        )
        await any_store.insert_performance(
            [make_request_sample(timestamp=100.0), make_request_sample(timestamp=500.0)]
        )
        await any_store.insert_health(_health("orders", ServiceStatus.HEALTHY, 100.0))

        assert await any_store.cleanup_older_than(Collection.METRICS, 200.0) == 1
        assert await any_store.cleanup_older_than(Collection.PERFORMANCE, 200.0) == 1
        assert await any_store.cleanup_older_than(Collection.HEALTH, 200.0) == 1
        remaining = await any_store.query_metrics_window("orders", None, 0.0, 1000.0)
        assert len(remaining) == 1

    async def test_cleanup_alerts_only_removes_old_resolved(
        self, any_store, make_alert
    ) -> None:
        old_resolved = make_alert(
            alert_type="a", status=AlertStatus.RESOLVED, resolved_at=100.0
        )
        new_resolved = make_alert(
            alert_type="b", status=AlertStatus.RESOLVED, resolved_at=900.0
        )
        old_active = make_alert(alert_type="c", created_at=1.0)
        for alert in (old_resolved, new_resolved, old_active):
            await any_store.create_alert(alert)

        deleted = await any_store.cleanup_older_than(Collection.ALERTS, 500.0)

        assert deleted == 1
        assert await any_store.get_alert(old_resolved.id) is None
        assert await any_store.get_alert(new_resolved.id) is not None
        assert await any_store.get_alert(old_active.id) is not None
