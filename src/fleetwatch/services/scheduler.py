"""Periodic task runner."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a coroutine function immediately and then every ``interval`` seconds.

    Exceptions raised by the function are logged here and never stop later
    runs. Cancellation via ``stop()`` interrupts the sleep or the running
    call.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._func = func
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the task on the running event loop. No-op if running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(
            "Periodic task started",
            extra={"task": self.name, "interval": self.interval},
        )

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Periodic task stopped", extra={"task": self.name})

    async def run_once(self) -> None:
        """Run the function once, logging any exception it raises."""
        self.runs += 1
        try:
            await self._func()
        except Exception:
            self.failures += 1
            logger.exception("Periodic task failed", extra={"task": self.name})

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
