"""SQLite telemetry store."""

import json
import sqlite3
from collections.abc import Sequence
from typing import Any

import aiosqlite

from fleetwatch.adapters.storage.sqlite_base import (
    AsyncConnectionManager,
    decode_json_object,
)
from fleetwatch.core.errors import AlertNotFoundError, DuplicateAlertError, StoreError
from fleetwatch.core.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    HealthRecord,
    MetricSample,
    MetricType,
    PerformanceSample,
    ServiceStatus,
)
from fleetwatch.core.ports import Collection

_SCHEMA = """
CREATE TABLE IF NOT EXISTS metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service_name TEXT NOT NULL,
    name TEXT NOT NULL,
    metric_type TEXT NOT NULL,
    value REAL NOT NULL,
    timestamp REAL NOT NULL,
    labels TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_metrics_service_name_ts
    ON metrics(service_name, name, timestamp);
CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp);

CREATE TABLE IF NOT EXISTS performance_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service_name TEXT NOT NULL,
    endpoint TEXT NOT NULL,
    method TEXT NOT NULL,
    response_time REAL NOT NULL,
    status_code INTEGER NOT NULL,
    request_size INTEGER NOT NULL,
    response_size INTEGER NOT NULL,
    user_agent TEXT,
    ip_address TEXT,
    timestamp REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_performance_service_ts
    ON performance_metrics(service_name, timestamp);

CREATE TABLE IF NOT EXISTS health_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service_name TEXT NOT NULL,
    service_url TEXT NOT NULL,
    status TEXT NOT NULL,
    response_time REAL,
    last_checked REAL NOT NULL,
    error_message TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_health_service_checked
    ON health_records(service_name, last_checked);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    service_name TEXT NOT NULL,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    status TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    value REAL,
    threshold REAL,
    labels TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL,
    resolved_at REAL,
    resolved_by TEXT,
    acknowledged_at REAL,
    acknowledged_by TEXT
);
CREATE INDEX IF NOT EXISTS idx_alerts_key_status
    ON alerts(service_name, alert_type, status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open_key
    ON alerts(service_name, alert_type)
    WHERE status IN ('active', 'acknowledged');
"""

_INSERT_METRIC = """
INSERT INTO metrics (service_name, name, metric_type, value, timestamp, labels)
VALUES (?, ?, ?, ?, ?, ?)
"""

_SELECT_METRIC_COLUMNS = """
SELECT service_name, name, metric_type, value, timestamp, labels FROM metrics
"""

_SELECT_LATEST_METRIC = (
    _SELECT_METRIC_COLUMNS
    + """
WHERE service_name = ? AND name = ?
ORDER BY timestamp DESC, id DESC
LIMIT 1
"""
)

_SELECT_METRICS_WINDOW = (
    _SELECT_METRIC_COLUMNS
    + """
WHERE service_name = ? AND timestamp >= ? AND timestamp <= ?
"""
)

_INSERT_PERFORMANCE = """
INSERT INTO performance_metrics (
    service_name, endpoint, method, response_time, status_code,
    request_size, response_size, user_agent, ip_address, timestamp
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_PERFORMANCE_WINDOW = """
SELECT service_name, endpoint, method, response_time, status_code,
       request_size, response_size, user_agent, ip_address, timestamp
FROM performance_metrics
WHERE service_name = ? AND timestamp >= ? AND timestamp <= ?
"""

_INSERT_HEALTH = """
INSERT INTO health_records (
    service_name, service_url, status, response_time, last_checked,
    error_message, metadata
) VALUES (?, ?, ?, ?, ?, ?, ?)
"""

_HEALTH_COLUMNS = """
service_name, service_url, status, response_time, last_checked,
error_message, metadata
"""

_SELECT_LATEST_HEALTH = f"""
SELECT {_HEALTH_COLUMNS} FROM health_records
WHERE service_name = ?
ORDER BY last_checked DESC, id DESC
LIMIT 1
"""

_SELECT_LATEST_HEALTH_ALL = f"""
SELECT {_HEALTH_COLUMNS} FROM (
    SELECT *, ROW_NUMBER() OVER (
        PARTITION BY service_name ORDER BY last_checked DESC, id DESC
    ) AS rn
    FROM health_records
)
WHERE rn = 1
ORDER BY service_name ASC
"""

_SELECT_HEALTH_WINDOW = f"""
SELECT {_HEALTH_COLUMNS} FROM health_records
WHERE service_name = ? AND last_checked >= ? AND last_checked <= ?
ORDER BY last_checked DESC, id DESC
"""

_ALERT_COLUMNS = (
    "id",
    "service_name",
    "alert_type",
    "severity",
    "status",
    "title",
    "description",
    "value",
    "threshold",
    "labels",
    "created_at",
    "resolved_at",
    "resolved_by",
    "acknowledged_at",
    "acknowledged_by",
)

_INSERT_ALERT = f"""
INSERT INTO alerts ({", ".join(_ALERT_COLUMNS)})
VALUES ({", ".join("?" for _ in _ALERT_COLUMNS)})
"""

_SELECT_ALERTS = f"SELECT {', '.join(_ALERT_COLUMNS)} FROM alerts"

_SELECT_OPEN_ALERT = (
    _SELECT_ALERTS
    + """
WHERE service_name = ? AND alert_type = ? AND status IN ('active', 'acknowledged')
ORDER BY created_at DESC
LIMIT 1
"""
)

_DELETE_BEFORE = {
    Collection.METRICS: "DELETE FROM metrics WHERE timestamp < ?",
    Collection.PERFORMANCE: "DELETE FROM performance_metrics WHERE timestamp < ?",
    Collection.HEALTH: "DELETE FROM health_records WHERE last_checked < ?",
    Collection.ALERTS: (
        "DELETE FROM alerts WHERE status = 'resolved' AND resolved_at < ?"
    ),
}


def _metric_row(sample: MetricSample) -> tuple[Any, ...]:
    return (
        sample.service_name,
        sample.name,
        sample.metric_type.value,
        sample.value,
        sample.timestamp,
        json.dumps(sample.labels),
    )


def _metric_from_row(row: aiosqlite.Row) -> MetricSample:
    return MetricSample(
        service_name=row[0],
        name=row[1],
        metric_type=MetricType(row[2]),
        value=row[3],
        timestamp=row[4],
        labels=decode_json_object(row[5]),
    )


def _performance_row(sample: PerformanceSample) -> tuple[Any, ...]:
    return (
        sample.service_name,
        sample.endpoint,
        sample.method,
        sample.response_time,
        sample.status_code,
        sample.request_size,
        sample.response_size,
        sample.user_agent,
        sample.ip_address,
        sample.timestamp,
    )


def _performance_from_row(row: aiosqlite.Row) -> PerformanceSample:
    return PerformanceSample(
        service_name=row[0],
        endpoint=row[1],
        method=row[2],
        response_time=row[3],
        status_code=row[4],
        request_size=row[5],
        response_size=row[6],
        user_agent=row[7],
        ip_address=row[8],
        timestamp=row[9],
    )


def _health_from_row(row: aiosqlite.Row) -> HealthRecord:
    return HealthRecord(
        service_name=row[0],
        service_url=row[1],
        status=ServiceStatus(row[2]),
        response_time=row[3],
        last_checked=row[4],
        error_message=row[5],
        metadata=decode_json_object(row[6]),
    )


def _alert_to_values(alert: Alert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "service_name": alert.service_name,
        "alert_type": alert.alert_type,
        "severity": alert.severity.value,
        "status": alert.status.value,
        "title": alert.title,
        "description": alert.description,
        "value": alert.value,
        "threshold": alert.threshold,
        "labels": json.dumps(alert.labels),
        "created_at": alert.created_at,
        "resolved_at": alert.resolved_at,
        "resolved_by": alert.resolved_by,
        "acknowledged_at": alert.acknowledged_at,
        "acknowledged_by": alert.acknowledged_by,
    }


def _alert_from_row(row: aiosqlite.Row) -> Alert:
    values = dict(zip(_ALERT_COLUMNS, row, strict=True))
    values["severity"] = AlertSeverity(values["severity"])
    values["status"] = AlertStatus(values["status"])
    values["labels"] = decode_json_object(values["labels"])
    return Alert(**values)


class SQLiteTelemetryStore:
    """SQLite implementation of TelemetryStorePort.

    Stores every collection in one SQLite database using aiosqlite for
    non-blocking async operations. Uses WAL mode for concurrent access.

    A partial unique index on (service_name, alert_type) over open
    statuses makes alert creation a conditional write: a second open
    alert for the same key raises DuplicateAlertError even when two
    evaluators race past the find_active_alert check.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._manager = AsyncConnectionManager(db_path, _SCHEMA)

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        await self._manager.close()

    async def insert_metrics(self, batch: Sequence[MetricSample]) -> int:
        """Write a batch of metric samples in one transaction."""
        if not batch:
            return 0
        try:
            async with self._manager.transaction() as db:
                await db.executemany(_INSERT_METRIC, [_metric_row(s) for s in batch])
        except sqlite3.Error as e:
            raise StoreError(f"metrics insert failed: {e}") from e
        return len(batch)

    async def insert_performance(self, batch: Sequence[PerformanceSample]) -> int:
        """Write a batch of performance samples in one transaction."""
        if not batch:
            return 0
        try:
            async with self._manager.transaction() as db:
                await db.executemany(
                    _INSERT_PERFORMANCE, [_performance_row(s) for s in batch]
                )
        except sqlite3.Error as e:
            raise StoreError(f"performance insert failed: {e}") from e
        return len(batch)

    async def insert_health(self, record: HealthRecord) -> None:
        """Append a health record."""
        try:
            async with self._manager.transaction() as db:
                await db.execute(
                    _INSERT_HEALTH,
                    (
                        record.service_name,
                        record.service_url,
                        record.status.value,
                        record.response_time,
                        record.last_checked,
                        record.error_message,
                        json.dumps(record.metadata, default=str),
                    ),
                )
        except sqlite3.Error as e:
            raise StoreError(f"health insert failed: {e}") from e

    async def latest_health(self, service_name: str) -> HealthRecord | None:
        """Return the most recent health record for a service."""
        async with self._manager.connection() as db:
            async with db.execute(_SELECT_LATEST_HEALTH, (service_name,)) as cursor:
                row = await cursor.fetchone()
        return _health_from_row(row) if row else None

    async def latest_health_all(self) -> list[HealthRecord]:
        """Return the most recent health record of every known service."""
        async with self._manager.connection() as db:
            async with db.execute(_SELECT_LATEST_HEALTH_ALL) as cursor:
                return [_health_from_row(row) async for row in cursor]

    async def query_health_window(
        self, service_name: str, start: float, end: float
    ) -> list[HealthRecord]:
        """Return health records in the window, newest first."""
        async with self._manager.connection() as db:
            async with db.execute(
                _SELECT_HEALTH_WINDOW, (service_name, start, end)
            ) as cursor:
                return [_health_from_row(row) async for row in cursor]

    async def latest_metric(self, service_name: str, name: str) -> MetricSample | None:
        """Return the most recent sample of a metric."""
        async with self._manager.connection() as db:
            async with db.execute(
                _SELECT_LATEST_METRIC, (service_name, name)
            ) as cursor:
                row = await cursor.fetchone()
        return _metric_from_row(row) if row else None

    async def query_metrics_window(
        self,
        service_name: str,
        name: str | None,
        start: float,
        end: float,
    ) -> list[MetricSample]:
        """Return metric samples in the window, oldest first."""
        query = _SELECT_METRICS_WINDOW
        params: tuple[Any, ...] = (service_name, start, end)
        if name is not None:
            query += " AND name = ?"
            params += (name,)
        query += " ORDER BY timestamp ASC, id ASC"
        async with self._manager.connection() as db:
            async with db.execute(query, params) as cursor:
                return [_metric_from_row(row) async for row in cursor]

    async def query_performance_window(
        self,
        service_name: str,
        start: float,
        end: float,
        endpoint: str | None = None,
    ) -> list[PerformanceSample]:
        """Return performance samples in the window, oldest first."""
        query = _SELECT_PERFORMANCE_WINDOW
        params: tuple[Any, ...] = (service_name, start, end)
        if endpoint is not None:
            query += " AND endpoint = ?"
            params += (endpoint,)
        query += " ORDER BY timestamp ASC, id ASC"
        async with self._manager.connection() as db:
            async with db.execute(query, params) as cursor:
                return [_performance_from_row(row) async for row in cursor]

    async def find_active_alert(
        self, service_name: str, alert_type: str
    ) -> Alert | None:
        """Return the open alert for a dedup key."""
        async with self._manager.connection() as db:
            async with db.execute(
                _SELECT_OPEN_ALERT, (service_name, alert_type)
            ) as cursor:
                row = await cursor.fetchone()
        return _alert_from_row(row) if row else None

    async def create_alert(self, alert: Alert) -> Alert:
        """Persist a new alert as a conditional write on the open-key index."""
        values = _alert_to_values(alert)
        try:
            async with self._manager.transaction() as db:
                await db.execute(_INSERT_ALERT, tuple(values.values()))
        except sqlite3.IntegrityError as e:
            raise DuplicateAlertError(alert.service_name, alert.alert_type) from e
        except sqlite3.Error as e:
            raise StoreError(f"alert insert failed: {e}") from e
        return alert

    async def update_alert(self, alert_id: str, patch: dict[str, Any]) -> Alert:
        """Apply field changes to an alert."""
        unknown = set(patch) - set(_ALERT_COLUMNS)
        if unknown:
            raise ValueError(f"unknown alert fields: {sorted(unknown)}")
        if "id" in patch:
            raise ValueError("alert id cannot be changed")
        current = await self.get_alert(alert_id)
        if current is None:
            raise AlertNotFoundError(alert_id)
        if not patch:
            return current

        values = _alert_to_values(current)
        for key, value in patch.items():
            values[key] = value
        updated = _alert_from_values(values)
        stored = _alert_to_values(updated)
        assignments = ", ".join(f"{key} = ?" for key in patch)
        params = tuple(stored[key] for key in patch) + (alert_id,)
        try:
            async with self._manager.transaction() as db:
                await db.execute(
                    f"UPDATE alerts SET {assignments} WHERE id = ?", params
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateAlertError(current.service_name, current.alert_type) from e
        except sqlite3.Error as e:
            raise StoreError(f"alert update failed: {e}") from e
        return updated

    async def get_alert(self, alert_id: str) -> Alert | None:
        """Return an alert by id."""
        async with self._manager.connection() as db:
            async with db.execute(
                _SELECT_ALERTS + " WHERE id = ?", (alert_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return _alert_from_row(row) if row else None

    async def list_alerts(
        self,
        service_name: str | None = None,
        status: AlertStatus | None = None,
        severity: AlertSeverity | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Alert]:
        """Return matching alerts, newest first."""
        clauses: list[str] = []
        params: list[Any] = []
        if service_name is not None:
            clauses.append("service_name = ?")
            params.append(service_name)
        if status is not None:
            clauses.append("status = ?")
            params.append(AlertStatus(status).value)
        if severity is not None:
            clauses.append("severity = ?")
            params.append(AlertSeverity(severity).value)
        query = _SELECT_ALERTS
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, offset])
        async with self._manager.connection() as db:
            async with db.execute(query, params) as cursor:
                return [_alert_from_row(row) async for row in cursor]

    async def cleanup_older_than(self, collection: Collection, cutoff: float) -> int:
        """Delete entries older than cutoff from a collection."""
        query = _DELETE_BEFORE[Collection(collection)]
        try:
            async with self._manager.transaction() as db:
                cursor = await db.execute(query, (cutoff,))
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"{collection} cleanup failed: {e}") from e


def _alert_from_values(values: dict[str, Any]) -> Alert:
    """Build an Alert from column values, coercing enums and labels."""
    coerced = dict(values)
    coerced["severity"] = AlertSeverity(coerced["severity"])
    coerced["status"] = AlertStatus(coerced["status"])
    labels = coerced["labels"]
    if isinstance(labels, str):
        coerced["labels"] = decode_json_object(labels)
    return Alert(**coerced)
