"""Process-wide wiring of the monitoring pipeline."""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

import httpx

from fleetwatch.adapters.channels import EmailChannel, PagerDutyChannel, SlackChannel
from fleetwatch.adapters.roster import (
    DEFAULT_SERVICES,
    HttpRegistryRoster,
    StaticRoster,
)
from fleetwatch.adapters.storage import SQLiteTelemetryStore
from fleetwatch.config import Settings
from fleetwatch.core.ports import NotificationChannel, RosterPort, TelemetryStorePort
from fleetwatch.services.alerts import AlertEvaluator, AlertThresholds
from fleetwatch.services.collector import MetricsCollector
from fleetwatch.services.health import HealthProbe
from fleetwatch.services.notifications import NotificationDispatcher
from fleetwatch.services.scheduler import PeriodicTask
from fleetwatch.services.sink import MetricSink

logger = logging.getLogger(__name__)

RETENTION_INTERVAL = 86400.0


def build_channels(
    settings: Settings, client: httpx.AsyncClient | None = None
) -> list[NotificationChannel]:
    """Create the email, Slack and PagerDuty channels from settings.

    All three are always registered so their status can be reported;
    disabled ones are skipped at dispatch time.
    """
    timeout = settings.notification_timeout
    return [
        EmailChannel(
            host=settings.email.smtp_host,
            port=settings.email.smtp_port,
            username=settings.email.username,
            password=settings.email.password,
            sender=settings.email.sender,
            recipients=settings.email.recipients,
            enabled=settings.email.enabled,
            use_tls=settings.email.use_tls,
            source=settings.service_name,
            timeout=timeout,
        ),
        SlackChannel(
            webhook_url=settings.slack.webhook_url,
            enabled=settings.slack.enabled,
            client=client,
            timeout=timeout,
        ),
        PagerDutyChannel(
            integration_key=settings.pagerduty.integration_key,
            enabled=settings.pagerduty.enabled,
            client=client,
            timeout=timeout,
        ),
    ]


def build_roster(
    settings: Settings, client: httpx.AsyncClient | None = None
) -> RosterPort:
    if settings.registry_url:
        return HttpRegistryRoster(
            settings.registry_url, client=client, timeout=settings.probe_timeout
        )
    if settings.services:
        return StaticRoster(s.to_endpoint() for s in settings.services)
    return StaticRoster(DEFAULT_SERVICES)


class Monitor:
    """One instance of every pipeline component, built from Settings.

    Example:
        ```python
        monitor = Monitor(load_settings())
        async with monitor:
            await stop_event.wait()
        ```

    ``stop()`` cancels the periodic tasks and then makes one final
    best-effort flush of the sink, bounded by the grace period.
    """

    def __init__(
        self,
        settings: Settings,
        store: TelemetryStorePort | None = None,
        roster: RosterPort | None = None,
        channels: Iterable[NotificationChannel] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or SQLiteTelemetryStore(settings.database_path)
        self.sink = MetricSink(
            self.store,
            capacity=settings.buffer_capacity,
            max_backlog=settings.max_backlog,
        )
        self.collector = MetricsCollector(
            self.sink,
            self.store,
            service_name=settings.service_name,
            interval=settings.intervals.metrics,
            cpu_sample_window=settings.cpu_sample_window,
        )
        self.probe = HealthProbe(
            self.store,
            roster or build_roster(settings, http_client),
            service_name=settings.service_name,
            service_version=settings.service_version,
            timeout=settings.probe_timeout,
            interval=settings.intervals.health,
            gateway_url=settings.gateway.url,
            gateway_token=settings.gateway.token,
            client=http_client,
        )
        self.dispatcher = NotificationDispatcher(
            build_channels(settings, http_client) if channels is None else channels,
            service_name=settings.service_name,
        )
        thresholds = settings.thresholds
        self.evaluator = AlertEvaluator(
            self.store,
            self.dispatcher,
            service_name=settings.service_name,
            thresholds=AlertThresholds(
                cpu=thresholds.cpu,
                memory=thresholds.memory,
                disk=thresholds.disk,
                response_time=thresholds.response_time,
                error_rate=thresholds.error_rate,
            ),
            window=settings.evaluation_window,
            interval=settings.intervals.alerts,
        )
        self._flush_task = PeriodicTask(
            "sink-flush", self.sink.tick, settings.intervals.flush
        )
        self._retention_task = PeriodicTask(
            "retention", self.cleanup, RETENTION_INTERVAL
        )
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self.collector.start()
        self.probe.start()
        self.evaluator.start()
        self._flush_task.start()
        self._retention_task.start()
        self._started = True
        logger.info(
            "Monitor started",
            extra={
                "service": self.settings.service_name,
                "database": self.settings.database_path,
            },
        )

    async def stop(self, grace: float | None = None) -> None:
        """Stop every task, then flush what is left in the sink.

        Args:
            grace: Seconds allowed for the final flush. Defaults to
                ``settings.shutdown_grace``.
        """
        if grace is None:
            grace = self.settings.shutdown_grace
        await asyncio.gather(
            self.collector.stop(),
            self.probe.stop(),
            self.evaluator.stop(),
            self._flush_task.stop(),
            self._retention_task.stop(),
        )
        self._started = False

        try:
            flushed = await asyncio.wait_for(self.sink.flush(), timeout=grace)
        except TimeoutError:
            stats = self.sink.stats()
            logger.error(
                "Final flush timed out, buffered samples lost",
                extra={
                    "metrics_buffered": stats.metrics_buffered,
                    "performance_buffered": stats.performance_buffered,
                },
            )
        else:
            stats = self.sink.stats()
            if stats.metrics_buffered or stats.performance_buffered:
                logger.error(
                    "Final flush failed, buffered samples lost",
                    extra={
                        "metrics_buffered": stats.metrics_buffered,
                        "performance_buffered": stats.performance_buffered,
                    },
                )
            logger.info("Monitor stopped", extra={"flushed": flushed})

        close = getattr(self.store, "close", None)
        if close is not None:
            await close()

    async def cleanup(self) -> dict[str, int]:
        """Apply age-based retention to every collection."""
        days = self.settings.retention_days
        deleted = await self.collector.cleanup_old_metrics(days)
        deleted["health"] = await self.probe.cleanup_old_records(days)
        deleted["alerts"] = await self.evaluator.cleanup_old_alerts(days)
        return deleted

    async def run_once(self) -> None:
        """Run one collection, probe, flush and evaluation cycle in order."""
        await self.collector.sample_system()
        await self.probe.probe_all()
        await self.sink.flush()
        await self.evaluator.evaluate()

    def status(self) -> dict[str, Any]:
        stats = self.sink.stats()
        return {
            "running": self._started,
            "collector": self.collector.status(),
            "health": self.probe.status(),
            "alerts": self.evaluator.status(),
            "notifications": self.dispatcher.status(),
            "sink": {
                "metrics_buffered": stats.metrics_buffered,
                "performance_buffered": stats.performance_buffered,
                "flushed": stats.flushed,
                "flush_failures": stats.flush_failures,
                "dropped": stats.dropped,
            },
        }

    async def __aenter__(self) -> "Monitor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
