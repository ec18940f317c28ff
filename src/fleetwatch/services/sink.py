"""Buffered write path from producers to the telemetry store.

Producers call ``record`` and never wait on the store unless their call
filled a queue. Queues are drained by ``flush``, either when full or on
the periodic ``tick``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from fleetwatch.core.models import MetricSample, PerformanceSample
from fleetwatch.core.ports import TelemetryStorePort

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

T = TypeVar("T", MetricSample, PerformanceSample)


@dataclass(frozen=True)
class SinkStats:
    """Snapshot of sink counters.

    Attributes:
        metrics_buffered: Metric samples waiting to be written.
        performance_buffered: Performance samples waiting to be written.
        recorded: Samples accepted by ``record`` since start.
        flushed: Samples written to the store since start.
        flush_failures: Failed bulk writes since start.
        dropped: Samples discarded because the backlog cap was hit.
    """

    metrics_buffered: int
    performance_buffered: int
    recorded: int
    flushed: int
    flush_failures: int
    dropped: int


class _Queue(Generic[T]):
    def __init__(self, name: str, write: Callable[[list[T]], Awaitable[int]]) -> None:
        self.name = name
        self.write = write
        self.items: list[T] = []
        # Set after a failed write; the next attempt is left to tick().
        self.retrying = False


class MetricSink:
    """Bounded-latency buffer in front of TelemetryStorePort.

    Each flush swaps a queue for an empty one and writes the swapped batch
    with one bulk call. If the write fails the batch is put back in front
    of whatever was recorded meanwhile, so samples are retried in their
    original order and none is written twice by the sink.

    Args:
        store: Destination for flushed batches.
        capacity: Queue length that triggers an immediate flush.
        max_backlog: Optional cap on a queue's length while the store is
            failing. When exceeded, the oldest samples are dropped and
            logged. None keeps everything.
    """

    def __init__(
        self,
        store: TelemetryStorePort,
        capacity: int = DEFAULT_CAPACITY,
        max_backlog: int | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if max_backlog is not None and max_backlog < capacity:
            raise ValueError("max_backlog must be at least capacity")
        self._store = store
        self._capacity = capacity
        self._max_backlog = max_backlog
        self._metrics: _Queue[MetricSample] = _Queue("metrics", store.insert_metrics)
        self._performance: _Queue[PerformanceSample] = _Queue(
            "performance", store.insert_performance
        )
        self._recorded = 0
        self._flushed = 0
        self._flush_failures = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    async def record(self, sample: MetricSample | PerformanceSample) -> None:
        """Queue a sample, flushing its queue first if it is now full.

        Never raises: store failures are logged and the samples kept.
        """
        if isinstance(sample, PerformanceSample):
            await self._append(self._performance, sample)
        else:
            await self._append(self._metrics, sample)

    async def _append(self, queue: _Queue[T], sample: T) -> None:
        queue.items.append(sample)
        self._recorded += 1
        self._enforce_backlog(queue)
        if len(queue.items) >= self._capacity and not queue.retrying:
            await self._flush_queue(queue)

    async def flush(self) -> int:
        """Write both queues to the store concurrently.

        Returns:
            Number of samples written.
        """
        written = await asyncio.gather(
            self._flush_queue(self._metrics),
            self._flush_queue(self._performance),
        )
        return sum(written)

    async def tick(self) -> int:
        """Periodic flush entry point."""
        return await self.flush()

    async def _flush_queue(self, queue: _Queue[T]) -> int:
        if not queue.items:
            return 0
        batch, queue.items = queue.items, []
        try:
            await queue.write(batch)
        except asyncio.CancelledError:
            queue.items = batch + queue.items
            raise
        except Exception:
            queue.items = batch + queue.items
            queue.retrying = True
            self._flush_failures += 1
            logger.exception(
                "Flush failed, batch re-queued",
                extra={
                    "queue": queue.name,
                    "batch_size": len(batch),
                    "buffered": len(queue.items),
                },
            )
            self._enforce_backlog(queue)
            return 0
        queue.retrying = False
        self._flushed += len(batch)
        logger.debug(
            "Flushed batch", extra={"queue": queue.name, "batch_size": len(batch)}
        )
        return len(batch)

    def _enforce_backlog(self, queue: _Queue[T]) -> None:
        if self._max_backlog is None:
            return
        excess = len(queue.items) - self._max_backlog
        if excess <= 0:
            return
        del queue.items[:excess]
        self._dropped += excess
        logger.error(
            "Backlog cap reached, oldest samples dropped",
            extra={"queue": queue.name, "dropped": excess},
        )

    def stats(self) -> SinkStats:
        return SinkStats(
            metrics_buffered=len(self._metrics.items),
            performance_buffered=len(self._performance.items),
            recorded=self._recorded,
            flushed=self._flushed,
            flush_failures=self._flush_failures,
            dropped=self._dropped,
        )
