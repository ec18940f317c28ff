"""Roster providers: where the health probe learns which services exist."""

import logging
from collections.abc import Iterable

import httpx

from fleetwatch.core.errors import RosterError
from fleetwatch.core.models import ServiceEndpoint, is_http_url

logger = logging.getLogger(__name__)

_DEFAULT_SERVICE_PORTS = {
    "api-gateway": 3000,
    "auth-service": 3001,
    "user-service": 3002,
    "customer-service": 3003,
    "hotel-service": 3004,
    "restaurant-service": 3005,
    "food-delivery-service": 3006,
    "hall-service": 3007,
    "inventory-service": 3008,
    "finance-service": 3010,
    "analytics-service": 3011,
    "notification-service": 3012,
    "logging-service": 3013,
    "administration-service": 3014,
}

DEFAULT_SERVICES = tuple(
    ServiceEndpoint(name=name, url=f"http://localhost:{port}/health", port=port)
    for name, port in _DEFAULT_SERVICE_PORTS.items()
)


class StaticRoster:
    """A fixed list of services."""

    def __init__(self, services: Iterable[ServiceEndpoint] = DEFAULT_SERVICES) -> None:
        self._services = list(services)

    async def list(self) -> list[ServiceEndpoint]:
        return list(self._services)


class HttpRegistryRoster:
    """Reads the roster from a service registry.

    The registry answers ``GET {registry_url}`` with a JSON array of
    ``{"name", "url", "port"}`` objects. Entries without a name or with
    anything but an http(s) URL are skipped.
    """

    def __init__(
        self,
        registry_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._registry_url = registry_url
        self._client = client
        self._timeout = timeout

    async def _fetch(self) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(self._registry_url, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(self._registry_url)

    async def list(self) -> list[ServiceEndpoint]:
        try:
            response = await self._fetch()
            response.raise_for_status()
            entries = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RosterError(f"service registry unavailable: {e}") from e
        if not isinstance(entries, list):
            raise RosterError("service registry did not return a list")

        services: list[ServiceEndpoint] = []
        for entry in entries:
            if not (
                isinstance(entry, dict)
                and entry.get("name")
                and is_http_url(str(entry.get("url") or ""))
            ):
                logger.warning(
                    "Skipping malformed registry entry", extra={"entry": repr(entry)}
                )
                continue
            port = entry.get("port")
            services.append(
                ServiceEndpoint(
                    name=str(entry["name"]),
                    url=str(entry["url"]),
                    port=port if isinstance(port, int) else None,
                )
            )
        return services
