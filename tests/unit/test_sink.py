"""Tests for MetricSink buffering and flushing."""

import asyncio
import logging

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fleetwatch.adapters.storage import InMemoryTelemetryStore
from fleetwatch.core.errors import StoreError
from fleetwatch.core.models import MetricSample
from fleetwatch.services.sink import MetricSink

pytestmark = [pytest.mark.services, pytest.mark.tier(1)]


def _metric(i: int) -> MetricSample:
    return MetricSample(
        service_name="orders", name="m", value=float(i), timestamp=float(i)
    )


class TestRecord:
    """Tests for record() and capacity flushing."""

    async def test_samples_stay_buffered_below_capacity(self, flaky_store) -> None:
        sink = MetricSink(flaky_store, capacity=3)

        await sink.record(_metric(1))
        await sink.record(_metric(2))

        assert flaky_store.metrics == []
        assert sink.stats().metrics_buffered == 2

    async def test_reaching_capacity_flushes_immediately(self, flaky_store) -> None:
        """The record that fills the queue triggers one bulk write."""
        sink = MetricSink(flaky_store, capacity=3)

        for i in range(3):
            await sink.record(_metric(i))

        assert [s.value for s in flaky_store.metrics] == [0.0, 1.0, 2.0]
        assert flaky_store.write_calls == 1
        assert sink.stats().metrics_buffered == 0

    async def test_performance_samples_use_their_own_queue(
        self, flaky_store, make_request_sample
    ) -> None:
        sink = MetricSink(flaky_store, capacity=2)

        await sink.record(_metric(1))
        await sink.record(make_request_sample())
        await sink.record(make_request_sample())

        assert len(flaky_store.performance) == 2
        assert flaky_store.metrics == []
        assert sink.stats().metrics_buffered == 1

    async def test_record_never_raises_when_store_fails(self, flaky_store) -> None:
        flaky_store.failing = True
        sink = MetricSink(flaky_store, capacity=1)

        await sink.record(_metric(1))

        assert sink.stats().metrics_buffered == 1
        assert sink.stats().flush_failures == 1

    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            MetricSink(InMemoryTelemetryStore(), capacity=0)


class TestFlush:
    """Tests for flush() and failure handling."""

    async def test_flush_writes_everything_once(
        self, flaky_store, make_request_sample
    ) -> None:
        sink = MetricSink(flaky_store, capacity=100)
        for i in range(5):
            await sink.record(_metric(i))
        await sink.record(make_request_sample())

        written = await sink.flush()

        assert written == 6
        assert len(flaky_store.metrics) == 5
        assert len(flaky_store.performance) == 1
        assert await sink.flush() == 0
        assert sink.stats().flushed == 6

    async def test_failed_batch_is_retried_without_loss_or_duplication(
        self, flaky_store
    ) -> None:
        """Samples recorded during a failed flush are kept behind the failed batch."""
        sink = MetricSink(flaky_store, capacity=100)
        for i in range(3):
            await sink.record(_metric(i))

        flaky_store.failing = True
        assert await sink.flush() == 0
        await sink.record(_metric(3))
        flaky_store.failing = False
        assert await sink.flush() == 4

        assert [s.value for s in flaky_store.metrics] == [0.0, 1.0, 2.0, 3.0]

    async def test_capacity_flush_waits_for_tick_after_failure(
        self, flaky_store
    ) -> None:
        """A failing store is retried on tick, not on every record."""
        sink = MetricSink(flaky_store, capacity=2)
        flaky_store.failing = True
        await sink.record(_metric(0))
        await sink.record(_metric(1))
        await sink.record(_metric(2))
        await sink.record(_metric(3))

        assert flaky_store.write_calls == 1

        flaky_store.failing = False
        await sink.tick()

        assert [s.value for s in flaky_store.metrics] == [0.0, 1.0, 2.0, 3.0]

    async def test_failure_is_logged(self, flaky_store, caplog) -> None:
        sink = MetricSink(flaky_store)
        await sink.record(_metric(1))
        flaky_store.failing = True

        with caplog.at_level(logging.ERROR, logger="fleetwatch.services.sink"):
            await sink.flush()

        assert "Flush failed" in caplog.text

    async def test_queues_flush_independently(
        self, flaky_store, make_request_sample, monkeypatch
    ) -> None:
        """A failing performance write does not block metric writes."""

        async def broken(batch):
            raise StoreError("performance table locked")

        monkeypatch.setattr(flaky_store, "insert_performance", broken)
        sink = MetricSink(flaky_store)
        await sink.record(_metric(1))
        await sink.record(make_request_sample())

        written = await sink.flush()

        assert written == 1
        assert len(flaky_store.metrics) == 1
        assert sink.stats().performance_buffered == 1


class TestBacklogCap:
    """Tests for the optional max_backlog."""

    async def test_oldest_samples_dropped_beyond_cap(self, flaky_store) -> None:
        flaky_store.failing = True
        sink = MetricSink(flaky_store, capacity=2, max_backlog=3)

        for i in range(5):
            await sink.record(_metric(i))
        flaky_store.failing = False
        await sink.flush()

        assert [s.value for s in flaky_store.metrics] == [2.0, 3.0, 4.0]
        assert sink.stats().dropped == 2

    def test_backlog_must_hold_a_batch(self) -> None:
        with pytest.raises(ValueError):
            MetricSink(InMemoryTelemetryStore(), capacity=10, max_backlog=5)


class _GatedStore(InMemoryTelemetryStore):
    """Holds every metric write open until ``gate`` is set."""

    def __init__(self, fail_first: bool = False) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.in_flight = 0
        self._fail_next = fail_first

    async def insert_metrics(self, batch):
        self.in_flight += 1
        await self.gate.wait()
        self.in_flight -= 1
        if self._fail_next:
            self._fail_next = False
            raise StoreError("transient")
        return await super().insert_metrics(batch)


async def _until_in_flight(store: _GatedStore, count: int) -> None:
    while store.in_flight < count:
        await asyncio.sleep(0)


class TestConcurrentProducers:
    """Tests for record() calls made while a flush is still writing."""

    async def test_records_during_failing_flush_are_kept_in_order(self) -> None:
        store = _GatedStore(fail_first=True)
        sink = MetricSink(store, capacity=10)
        await sink.record(_metric(0))
        await sink.record(_metric(1))

        flushing = asyncio.create_task(sink.flush())
        await _until_in_flight(store, 1)
        await asyncio.gather(*(sink.record(_metric(i)) for i in range(2, 8)))
        assert sink.stats().metrics_buffered == 6

        store.gate.set()
        assert await flushing == 0
        assert await sink.tick() == 8

        assert [s.value for s in store._metrics] == [float(i) for i in range(8)]
        assert sink.stats().metrics_buffered == 0
        assert sink.stats().flushed == 8

    async def test_capacity_flush_overlapping_a_held_write(self) -> None:
        """A second bulk write starts while the first is held; both land once."""
        store = _GatedStore(fail_first=True)
        sink = MetricSink(store, capacity=4)
        await sink.record(_metric(0))
        await sink.record(_metric(1))

        flushing = asyncio.create_task(sink.flush())
        await _until_in_flight(store, 1)
        producers = asyncio.gather(*(sink.record(_metric(i)) for i in range(2, 8)))
        await _until_in_flight(store, 2)

        store.gate.set()
        await asyncio.gather(flushing, producers)
        await sink.flush()

        values = [s.value for s in store._metrics]
        assert sorted(values) == [float(i) for i in range(8)]
        assert len(values) == len(set(values))
        assert sink.stats().recorded == 8
        assert sink.stats().flushed == 8


class _ToggleStore(InMemoryTelemetryStore):
    def __init__(self, failures: list[bool]) -> None:
        super().__init__()
        self._failures = iter(failures)

    async def insert_metrics(self, batch):
        if next(self._failures, False):
            raise StoreError("transient")
        return await super().insert_metrics(batch)


@given(
    ops=st.lists(
        st.one_of(st.integers(min_value=0, max_value=10**6), st.none()), max_size=60
    ),
    failures=st.lists(st.booleans(), max_size=30),
    capacity=st.integers(min_value=1, max_value=8),
)
@settings(max_examples=75, deadline=None)
def test_every_recorded_sample_is_stored_exactly_once(
    ops: list[int | None], failures: list[bool], capacity: int
) -> None:
    """Whatever the interleaving of records, flushes and store failures,
    a final successful flush leaves each sample stored exactly once."""

    async def scenario() -> tuple[list[float], list[float]]:
        store = _ToggleStore(failures)
        sink = MetricSink(store, capacity=capacity)
        recorded: list[float] = []
        for i, op in enumerate(ops):
            if op is None:
                await sink.flush()
            else:
                sample = MetricSample(
                    service_name="orders", name="m", value=float(op), timestamp=float(i)
                )
                recorded.append(sample.timestamp)
                await sink.record(sample)
        # Drain: the failure script is finite, so flushes eventually succeed.
        for _ in range(len(failures) + 1):
            await sink.flush()
        stored = [s.timestamp for s in store._metrics]
        return recorded, stored

    recorded, stored = asyncio.run(scenario())

    assert sorted(stored) == sorted(recorded)
    assert len(stored) == len(set(stored))
