"""Concurrent HTTP health probing of the service roster."""

import asyncio
import logging
import time
from collections import Counter
from typing import Any

import httpx

from fleetwatch.core.errors import RosterError
from fleetwatch.core.models import HealthRecord, ServiceStatus
from fleetwatch.core.ports import Collection, RosterPort, TelemetryStorePort
from fleetwatch.core.summaries import HealthSummary, summarize_health
from fleetwatch.services.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

_REPORTED_STATUSES = {
    status.value: status
    for status in (
        ServiceStatus.HEALTHY,
        ServiceStatus.UNHEALTHY,
        ServiceStatus.DEGRADED,
        ServiceStatus.MAINTENANCE,
    )
}

# Keys copied from a health body's "details" object into record metadata.
_DETAIL_KEYS = ("version", "uptime", "memory", "cpu", "database", "redis", "checks")


def map_status(value: object) -> ServiceStatus:
    """Map a reported status string onto ServiceStatus, case-insensitively.

    Missing, non-string or unrecognised values map to UNKNOWN.
    """
    if not isinstance(value, str):
        return ServiceStatus.UNKNOWN
    return _REPORTED_STATUSES.get(value.strip().lower(), ServiceStatus.UNKNOWN)


def _parse_body(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _success_metadata(
    response: httpx.Response, body: dict[str, Any] | None
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"status_code": response.status_code}
    details = body.get("details") if body else None
    if isinstance(details, dict):
        for key in _DETAIL_KEYS:
            if key in details:
                metadata[key] = details[key]
    return metadata


def _failure_metadata(error: httpx.HTTPError | httpx.InvalidURL) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "error": str(error) or type(error).__name__,
        "is_timeout": isinstance(error, httpx.TimeoutException),
        "is_network_error": isinstance(error, httpx.NetworkError),
    }
    if isinstance(error, httpx.HTTPStatusError):
        metadata["status_code"] = error.response.status_code
    return metadata


class HealthProbe:
    """Probes every roster endpoint and persists one HealthRecord per probe.

    Probes run concurrently and each has its own timeout. A failed probe
    never affects the others; it produces an UNHEALTHY record.

    Requests identify the monitor with ``User-Agent: {name}/{version}``.
    Endpoints under ``gateway_url`` also get the gateway token as both a
    bearer ``Authorization`` header and ``X-Service-Token``.
    """

    def __init__(
        self,
        store: TelemetryStorePort,
        roster: RosterPort,
        service_name: str,
        service_version: str = "1.0.0",
        timeout: float = DEFAULT_TIMEOUT,
        interval: float = 60.0,
        gateway_url: str | None = None,
        gateway_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._store = store
        self._roster = roster
        self._user_agent = f"{service_name}/{service_version}"
        self._timeout = timeout
        self._gateway_url = gateway_url
        self._gateway_token = gateway_token
        self._client = client
        self._task = PeriodicTask("health-probe", self.probe_all, interval)
        self.last_cycle_at: float | None = None

    def start(self) -> None:
        self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    def _headers_for(self, url: str) -> dict[str, str]:
        headers = {"User-Agent": self._user_agent, "Accept": "application/json"}
        if (
            self._gateway_token
            and self._gateway_url
            and url.startswith(self._gateway_url)
        ):
            headers["Authorization"] = f"Bearer {self._gateway_token}"
            headers["X-Service-Token"] = self._gateway_token
        return headers

    async def _get(
        self, url: str, headers: dict[str, str], timeout: float
    ) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=headers, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.get(url, headers=headers)

    async def _check(self, name: str, url: str, timeout: float) -> HealthRecord:
        started = time.perf_counter()
        try:
            response = await self._get(url, self._headers_for(url), timeout)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.warning(
                "Health check failed",
                extra={"service": name, "url": url, "error": str(e)},
            )
            return HealthRecord(
                service_name=name,
                service_url=url,
                status=ServiceStatus.UNHEALTHY,
                last_checked=time.time(),
                response_time=elapsed,
                error_message=str(e) or type(e).__name__,
                metadata=_failure_metadata(e),
            )

        elapsed = (time.perf_counter() - started) * 1000
        body = _parse_body(response)
        return HealthRecord(
            service_name=name,
            service_url=url,
            status=map_status(body.get("status") if body else None),
            last_checked=time.time(),
            response_time=elapsed,
            metadata=_success_metadata(response, body),
        )

    async def probe_one(
        self, name: str, url: str, timeout: float | None = None
    ) -> HealthRecord:
        """Probe a single endpoint and persist the result."""
        record = await self._check(name, url, timeout or self._timeout)
        try:
            await self._store.insert_health(record)
        except Exception:
            logger.exception("Failed to store health record", extra={"service": name})
        return record

    async def probe_all(self) -> list[HealthRecord]:
        """Probe every roster endpoint concurrently.

        Returns:
            One record per endpoint, in roster order.
        """
        try:
            services = await self._roster.list()
        except RosterError:
            logger.exception("Could not read service roster")
            return []

        records = await asyncio.gather(
            *(self.probe_one(service.name, service.url) for service in services)
        )
        self.last_cycle_at = time.time()
        counts = Counter(record.status for record in records)
        logger.info(
            "Health check cycle completed",
            extra={
                "total": len(records),
                "healthy": counts[ServiceStatus.HEALTHY],
                "unhealthy": counts[ServiceStatus.UNHEALTHY],
                "degraded": counts[ServiceStatus.DEGRADED],
            },
        )
        return list(records)

    async def get_all_services_health(self) -> list[HealthRecord]:
        """Latest record of every service that has been probed."""
        return await self._store.latest_health_all()

    async def get_services_by_status(
        self, status: ServiceStatus | str
    ) -> list[HealthRecord]:
        """Services whose latest record has the given status."""
        wanted = ServiceStatus(str(status).lower())
        records = await self._store.latest_health_all()
        return [r for r in records if r.status == wanted]

    async def get_service_health(self, service_name: str) -> HealthRecord | None:
        return await self._store.latest_health(service_name)

    async def get_service_health_summary(
        self, service_name: str, hours: float = 24
    ) -> HealthSummary:
        end = time.time()
        records = await self._store.query_health_window(
            service_name, end - hours * 3600, end
        )
        return summarize_health(service_name, records)

    async def cleanup_old_records(self, days_to_keep: int = 30) -> int:
        """Delete health records older than ``days_to_keep``."""
        cutoff = time.time() - days_to_keep * 86400
        deleted = await self._store.cleanup_older_than(Collection.HEALTH, cutoff)
        logger.info(
            "Old health records cleaned up",
            extra={"days_to_keep": days_to_keep, "deleted": deleted},
        )
        return deleted

    def status(self) -> dict[str, Any]:
        return {
            "running": self._task.running,
            "interval": self._task.interval,
            "timeout": self._timeout,
            "last_cycle_at": self.last_cycle_at,
        }
