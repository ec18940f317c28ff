"""ASGI middleware that records one PerformanceSample per HTTP request.

Framework-agnostic: works with any ASGI server (uvicorn, hypercorn, daphne)
and any ASGI application (Starlette, FastAPI, Django ASGI).
"""

import fnmatch
import logging
import time
import uuid
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

from fleetwatch.core.models import PerformanceSample

logger = logging.getLogger(__name__)

DEFAULT_SLOW_REQUEST_MS = 5000.0

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]


class RequestRecorder(Protocol):
    """Anything that accepts performance samples, e.g. MetricsCollector."""

    async def record_request(self, sample: PerformanceSample) -> None: ...


def _header(scope: Scope, name: str) -> str | None:
    """Return a request header value (case-insensitive), or None."""
    wanted = name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for key, value in headers:
        if key.lower() == wanted:
            return value.decode("latin-1")
    return None


def _request_id(scope: Scope, header_name: str) -> str:
    """Return the incoming request id header, or a new UUID if absent."""
    return _header(scope, header_name) or str(uuid.uuid4())


def _with_header(message: dict[str, Any], name: str, value: str) -> dict[str, Any]:
    """Copy of a response start message carrying ``name`` unless already set."""
    wanted = name.lower().encode()
    headers = list(message.get("headers", []))
    if any(key.lower() == wanted for key, _ in headers):
        return message
    headers.append((wanted, value.encode("latin-1")))
    return {**message, "headers": headers}


def _request_size(scope: Scope) -> int:
    length = _header(scope, "content-length")
    if length is None:
        return 0
    try:
        return max(int(length), 0)
    except ValueError:
        return 0


def _client_address(scope: Scope) -> str | None:
    forwarded = _header(scope, "x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = scope.get("client")
    if client:
        return str(client[0])
    return None


class RequestMonitoringMiddleware:
    """ASGI middleware that measures each request and hands it to a recorder.

    Captures response time, status code and response body size from the
    wrapped ``send``, and request size, user agent and client address from
    the scope. Recording never affects the response: errors raised by the
    recorder are logged and swallowed, errors raised by the application
    are recorded as status 500 and re-raised.

    Every monitored response carries the request id header, taken from
    the request or generated. Requests slower than the threshold are
    logged as warnings, 4xx responses as warnings and 5xx as errors.
    """

    def __init__(
        self,
        app: ASGIApp,
        recorder: RequestRecorder,
        service_name: str,
        exclude_paths: list[str] | None = None,
        request_id_header: str = "X-Request-ID",
        slow_request_threshold: float | None = DEFAULT_SLOW_REQUEST_MS,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            recorder: Receives one PerformanceSample per request.
            service_name: Service name stamped on every sample.
            exclude_paths: Paths to skip. Supports exact matches and
                wildcard patterns (e.g., "/internal/*").
            request_id_header: Header to read the request id from and echo
                on the response (default: "X-Request-ID").
            slow_request_threshold: Milliseconds above which a request is
                logged as slow. None disables the warning.
        """
        self.app = app
        self.recorder = recorder
        self.service_name = service_name
        self.exclude_paths = exclude_paths or []
        self.request_id_header = request_id_header
        self.slow_request_threshold = slow_request_threshold

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._path_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        request_id = _request_id(scope, self.request_id_header)
        captured: dict[str, Any] = {"status": None, "body_size": 0}

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
                message = _with_header(message, self.request_id_header, request_id)
            elif message["type"] == "http.response.body":
                captured["body_size"] += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        except Exception:
            captured["status"] = 500
            raise
        finally:
            duration = time.perf_counter() - start_time
            await self._record(scope, request_id, captured, duration)

    def _log_outcome(
        self, scope: Scope, request_id: str, status: int, response_time: float
    ) -> None:
        extra = {
            "request_id": request_id,
            "method": scope.get("method", "GET"),
            "path": scope["path"],
            "status_code": status,
            "response_time": response_time,
        }
        if status >= 500:
            logger.error("Error response", extra=extra)
        elif status >= 400:
            logger.warning("Client error response", extra=extra)
        threshold = self.slow_request_threshold
        if threshold is not None and response_time > threshold:
            logger.warning("Slow request", extra={**extra, "threshold": threshold})

    async def _record(
        self,
        scope: Scope,
        request_id: str,
        captured: dict[str, Any],
        duration: float,
    ) -> None:
        status = captured["status"] or 500
        self._log_outcome(scope, request_id, status, duration * 1000)
        try:
            sample = PerformanceSample(
                service_name=self.service_name,
                endpoint=scope["path"],
                method=scope.get("method", "GET"),
                response_time=duration * 1000,
                status_code=status,
                request_size=_request_size(scope),
                response_size=captured["body_size"],
                timestamp=time.time(),
                user_agent=_header(scope, "user-agent"),
                ip_address=_client_address(scope),
            )
            await self.recorder.record_request(sample)
        except Exception:
            logger.exception(
                "Failed to record request performance",
                extra={"path": scope.get("path"), "request_id": request_id},
            )
