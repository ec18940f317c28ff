"""aiosqlite connection management for the telemetry store."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

MEMORY = ":memory:"

# Milliseconds a writer waits on another process's lock before failing.
BUSY_TIMEOUT_MS = 5000


def decode_json_object(
    text: str | None, fallback: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Decode a stored JSON object column.

    Empty, corrupt or non-object values yield ``fallback`` (an empty dict
    when not given), so one bad row never breaks a query.
    """
    empty: dict[str, Any] = {} if fallback is None else fallback
    if not text:
        return empty
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return empty
    return value if isinstance(value, dict) else empty


class AsyncConnectionManager:
    """Opens aiosqlite connections for one database file and owns its schema.

    File databases get a fresh connection per operation, in WAL mode with a
    busy timeout so several monitor processes can share one file. A
    ``:memory:`` database only lives as long as its connection, so a single
    connection is kept open until ``close()``.

    Writers inside this process are serialized by ``transaction()``; a
    rollback on a shared connection never discards another coroutine's
    statements.
    """

    def __init__(self, db_path: str, schema: str) -> None:
        self.db_path = db_path
        self._schema = schema
        self._ready = False
        self._shared: aiosqlite.Connection | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def in_memory(self) -> bool:
        return self.db_path == MEMORY

    def _lock(self, purpose: str) -> asyncio.Lock:
        # Created on first use, inside the loop that runs the store.
        lock = self._locks.get(purpose)
        if lock is None:
            lock = self._locks[purpose] = asyncio.Lock()
        return lock

    async def _open(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        db.row_factory = aiosqlite.Row
        await db.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
        return db

    async def _prepare(self) -> None:
        async with self._lock("schema"):
            if self._ready:
                return
            if self.in_memory:
                self._shared = await self._open()
                await self._shared.executescript(self._schema)
            else:
                db = await self._open()
                try:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
                finally:
                    await db.close()
            self._ready = True

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection with the schema in place.

        Per-operation connections are closed on exit; the shared in-memory
        connection stays open.
        """
        if not self._ready:
            await self._prepare()
        if self._shared is not None:
            yield self._shared
            return
        db = await self._open()
        try:
            yield db
        finally:
            await db.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection whose statements commit together.

        Rolls back and re-raises if the block raises.
        """
        async with self._lock("write"), self.connection() as db:
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    async def close(self) -> None:
        """Close the shared in-memory connection. Its data is discarded."""
        shared, self._shared = self._shared, None
        if shared is not None:
            await shared.close()
            self._ready = False
