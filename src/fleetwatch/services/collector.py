"""System metrics sampling and the request-performance entry point."""

import asyncio
import logging
import time
from typing import Any

import psutil

from fleetwatch.core import metrics
from fleetwatch.core.models import MetricSample, MetricType, PerformanceSample
from fleetwatch.core.ports import Collection, TelemetryStorePort
from fleetwatch.core.summaries import (
    MetricsSummary,
    PerformanceSummary,
    summarize_metrics,
    summarize_performance,
)
from fleetwatch.services.scheduler import PeriodicTask
from fleetwatch.services.sink import MetricSink

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class MetricsCollector:
    """Samples host and process metrics and forwards them to the sink.

    Each dimension (CPU, load, memory, disk, process, network) is measured
    independently; a failing dimension is logged and skipped.
    """

    def __init__(
        self,
        sink: MetricSink,
        store: TelemetryStorePort,
        service_name: str,
        interval: float = 30.0,
        cpu_sample_window: float = 0.1,
        process: psutil.Process | None = None,
        disk_path: str = "/",
    ) -> None:
        self._sink = sink
        self._store = store
        self._service_name = service_name
        self._cpu_sample_window = cpu_sample_window
        self._process = process or psutil.Process()
        self._disk_path = disk_path
        self._task = PeriodicTask("metrics-collector", self.sample_system, interval)

    @property
    def service_name(self) -> str:
        return self._service_name

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def sample_system(self) -> list[MetricSample]:
        """Measure every dimension once and record the samples.

        Returns:
            The samples that were recorded.
        """
        samples: list[MetricSample] = []
        try:
            samples.append(await self._measure_cpu())
        except (psutil.Error, OSError):
            logger.exception("CPU measurement failed")

        for dimension, measure in (
            ("load", self._measure_load),
            ("memory", self._measure_memory),
            ("disk", self._measure_disk),
            ("process", self._measure_process),
            ("network", self._measure_network),
        ):
            try:
                samples.extend(measure())
            except (psutil.Error, OSError, AttributeError):
                logger.exception(
                    "Metric measurement failed", extra={"dimension": dimension}
                )

        for sample in samples:
            await self._sink.record(sample)
        logger.debug(
            "System metrics sampled",
            extra={"service": self._service_name, "count": len(samples)},
        )
        return samples

    def _gauge(self, name: str, value: float) -> MetricSample:
        return metrics.gauge(self._service_name, name, float(value))

    async def _measure_cpu(self) -> MetricSample:
        # Process CPU time over a short sleep, as a share of wall time.
        before = self._process.cpu_times()
        started = time.perf_counter()
        await asyncio.sleep(self._cpu_sample_window)
        after = self._process.cpu_times()
        elapsed = time.perf_counter() - started
        used = (after.user - before.user) + (after.system - before.system)
        usage = min(used / elapsed * 100, 100.0) if elapsed > 0 else 0.0
        return self._gauge("cpu.usage", usage)

    def _measure_load(self) -> list[MetricSample]:
        one, five, fifteen = psutil.getloadavg()
        return [
            self._gauge("cpu.load.1m", one),
            self._gauge("cpu.load.5m", five),
            self._gauge("cpu.load.15m", fifteen),
        ]

    def _measure_memory(self) -> list[MetricSample]:
        memory = psutil.virtual_memory()
        used = memory.total - memory.available
        percentage = used / memory.total * 100 if memory.total else 0.0
        return [
            self._gauge("memory.total", memory.total),
            self._gauge("memory.used", used),
            self._gauge("memory.free", memory.available),
            self._gauge("memory.usage.percentage", percentage),
        ]

    def _measure_disk(self) -> list[MetricSample]:
        disk = psutil.disk_usage(self._disk_path)
        return [self._gauge("disk.usage.percentage", disk.percent)]

    def _measure_process(self) -> list[MetricSample]:
        info = self._process.memory_info()
        return [
            self._gauge("process.memory.rss", info.rss),
            self._gauge("process.memory.vms", info.vms),
            self._gauge("process.uptime", time.time() - self._process.create_time()),
        ]

    def _measure_network(self) -> list[MetricSample]:
        counters = psutil.net_io_counters()
        if counters is None:
            return []
        return [
            metrics.counter(
                self._service_name, "network.in", float(counters.bytes_recv)
            ),
            metrics.counter(
                self._service_name, "network.out", float(counters.bytes_sent)
            ),
        ]

    async def record_request(self, sample: PerformanceSample) -> None:
        """Forward one request's performance sample to the sink."""
        await self._sink.record(sample)

    async def record_custom(
        self,
        service_name: str,
        name: str,
        value: float,
        metric_type: MetricType = MetricType.GAUGE,
        labels: dict[str, str] | None = None,
    ) -> MetricSample:
        """Record an application-defined metric."""
        sample = metrics.sample(service_name, name, value, metric_type, labels)
        await self._sink.record(sample)
        return sample

    async def get_metrics_summary(
        self, service_name: str, hours: float = 24
    ) -> MetricsSummary:
        """Average each metric of a service over the trailing ``hours``."""
        end = time.time()
        samples = await self._store.query_metrics_window(
            service_name, None, end - hours * 3600, end
        )
        return summarize_metrics(service_name, samples)

    async def get_performance_summary(
        self,
        service_name: str,
        start: float,
        end: float,
        endpoint: str | None = None,
    ) -> PerformanceSummary:
        samples = await self._store.query_performance_window(
            service_name, start, end, endpoint
        )
        return summarize_performance(service_name, samples, start, end)

    async def cleanup_old_metrics(self, days_to_keep: int = 30) -> dict[str, int]:
        """Delete metric and performance samples older than ``days_to_keep``."""
        cutoff = time.time() - days_to_keep * SECONDS_PER_DAY
        deleted = {
            Collection.METRICS.value: await self._store.cleanup_older_than(
                Collection.METRICS, cutoff
            ),
            Collection.PERFORMANCE.value: await self._store.cleanup_older_than(
                Collection.PERFORMANCE, cutoff
            ),
        }
        logger.info(
            "Old metrics cleaned up", extra={"days_to_keep": days_to_keep, **deleted}
        )
        return deleted

    def status(self) -> dict[str, Any]:
        stats = self._sink.stats()
        return {
            "running": self._task.running,
            "interval": self._task.interval,
            "metrics_buffered": stats.metrics_buffered,
            "performance_buffered": stats.performance_buffered,
        }
