"""Tests for MetricsCollector."""

import time
from types import SimpleNamespace

import psutil
import pytest

from fleetwatch.core.models import MetricType
from fleetwatch.core.ports import Collection
from fleetwatch.services.collector import MetricsCollector
from fleetwatch.services.sink import MetricSink

pytestmark = [pytest.mark.services, pytest.mark.tier(1)]

SYSTEM_METRICS = {
    "cpu.usage",
    "cpu.load.1m",
    "cpu.load.5m",
    "cpu.load.15m",
    "memory.total",
    "memory.used",
    "memory.free",
    "memory.usage.percentage",
    "disk.usage.percentage",
    "process.memory.rss",
    "process.memory.vms",
    "process.uptime",
    "network.in",
    "network.out",
}


class FakeProcess:
    """Process stand-in with scripted CPU times."""

    def __init__(self, cpu_seconds_per_call: float) -> None:
        self._calls = 0
        self._step = cpu_seconds_per_call

    def cpu_times(self):
        used = self._calls * self._step
        self._calls += 1
        return SimpleNamespace(user=used, system=0.0)

    def memory_info(self):
        return SimpleNamespace(rss=1024, vms=4096)

    def create_time(self) -> float:
        return time.time() - 60


@pytest.fixture
def sink(store) -> MetricSink:
    return MetricSink(store, capacity=1000)


@pytest.fixture
def collector(sink, store) -> MetricsCollector:
    return MetricsCollector(sink, store, "orders", cpu_sample_window=0.01)


def _names(samples) -> set[str]:
    return {s.name for s in samples}


class TestSampleSystem:
    """Tests for sample_system()."""

    async def test_records_every_system_metric(self, collector, sink) -> None:
        samples = await collector.sample_system()

        assert _names(samples) == SYSTEM_METRICS
        assert all(s.service_name == "orders" for s in samples)
        assert sink.stats().metrics_buffered == len(samples)

    async def test_network_counters_are_counters(self, collector) -> None:
        samples = {s.name: s for s in await collector.sample_system()}

        assert samples["network.in"].metric_type == MetricType.COUNTER
        assert samples["cpu.usage"].metric_type == MetricType.GAUGE

    async def test_cpu_usage_is_capped_at_100(self, sink, store) -> None:
        """More CPU time than wall time (multi-core) still reports 100."""
        collector = MetricsCollector(
            sink,
            store,
            "orders",
            cpu_sample_window=0.01,
            process=FakeProcess(cpu_seconds_per_call=5.0),
        )

        samples = {s.name: s for s in await collector.sample_system()}

        assert samples["cpu.usage"].value == 100.0
        assert samples["process.memory.rss"].value == 1024.0
        assert samples["process.uptime"].value == pytest.approx(60, abs=5)

    async def test_failing_dimension_is_skipped(
        self, collector, monkeypatch, caplog
    ) -> None:
        """One broken measurement does not stop the others."""

        def broken():
            raise OSError("no load average on this platform")

        monkeypatch.setattr(psutil, "getloadavg", broken)

        samples = await collector.sample_system()

        assert not _names(samples) & {"cpu.load.1m", "cpu.load.5m", "cpu.load.15m"}
        assert "memory.total" in _names(samples)
        assert "Metric measurement failed" in caplog.text

    async def test_missing_network_counters(self, collector, monkeypatch) -> None:
        monkeypatch.setattr(psutil, "net_io_counters", lambda: None)

        samples = await collector.sample_system()

        assert "network.in" not in _names(samples)
        assert "cpu.usage" in _names(samples)


class TestRecording:
    """Tests for request and custom metric recording."""

    async def test_record_request_goes_to_sink(
        self, collector, sink, make_request_sample
    ) -> None:
        await collector.record_request(make_request_sample())

        assert sink.stats().performance_buffered == 1

    async def test_record_custom(self, collector, sink, store) -> None:
        sample = await collector.record_custom(
            "billing", "invoices.created", 3, MetricType.COUNTER, {"region": "eu"}
        )
        await sink.flush()

        stored = await store.latest_metric("billing", "invoices.created")
        assert stored == sample
        assert stored.metric_type == MetricType.COUNTER


class TestQueries:
    """Tests for summaries and retention."""

    async def test_metrics_summary_covers_trailing_hours(
        self, collector, store, make_metric
    ) -> None:
        now = time.time()
        await store.insert_metrics(
            [
                make_metric("cpu.usage", 10.0, timestamp=now - 60),
                make_metric("cpu.usage", 30.0, timestamp=now - 120),
                make_metric("cpu.usage", 99.0, timestamp=now - 3 * 3600),
            ]
        )

        summary = await collector.get_metrics_summary("orders", hours=1)

        assert summary.total_metrics == 2
        assert summary.average_values == {"cpu.usage": 20.0}

    async def test_performance_summary(
        self, collector, store, make_request_sample
    ) -> None:
        await store.insert_performance(
            [
                make_request_sample(status_code=200, timestamp=10.0),
                make_request_sample(status_code=500, timestamp=20.0),
            ]
        )

        summary = await collector.get_performance_summary("orders", 0.0, 100.0)

        assert summary.total_requests == 2
        assert summary.error_rate == 50.0

    async def test_cleanup_old_metrics(
        self, collector, store, make_metric, make_request_sample
    ) -> None:
        old = time.time() - 40 * 86400
        await store.insert_metrics([make_metric(timestamp=old), make_metric()])
        await store.insert_performance([make_request_sample(timestamp=old)])

        deleted = await collector.cleanup_old_metrics(days_to_keep=30)

        assert deleted == {Collection.METRICS.value: 1, Collection.PERFORMANCE.value: 1}

    async def test_status(self, collector) -> None:
        status = collector.status()

        assert status["running"] is False
        assert status["interval"] == 30.0
        assert status["metrics_buffered"] == 0

    async def test_start_and_stop(self, collector) -> None:
        collector.start()
        assert collector.status()["running"] is True

        await collector.stop()
        assert collector.status()["running"] is False
