"""
Repository: persistence layer for sensors, readings and alerts.

Defines the ``Repository`` interface consumed by the ingest pipeline and the
lifecycle manager, a PostgreSQL implementation using ``psycopg`` (v3), and a
thread-safe in-memory implementation used by the local dev harness and the
test suite.

Key Design Decisions:
    - **Document columns**: thresholds, the current-reading snapshot, reading
      metadata, the breached alert threshold and the alert notes log are
      stored as JSONB documents. Everything that is filtered on is a plain
      column.
    - **Atomic lifecycle updates**: every status transition is a single
      conditional ``UPDATE ... WHERE status = ANY(...) RETURNING``. When no
      row comes back the caller decides between "missing" and "not allowed".
    - **Atomic note append**: notes are appended with ``notes || $note``
      inside the UPDATE, so concurrent appends on the same alert never
      overwrite each other.
    - **Bounded I/O**: connections carry ``connect_timeout`` and a
      per-session ``statement_timeout``. Connection failures and cancelled
      statements (``psycopg.OperationalError``) surface as
      ``UnavailableError``; other driver errors as ``InternalError``.
    - **Last write wins**: ``update_current_reading`` overwrites the cached
      snapshot unconditionally. A timestamp compare-and-swap in the WHERE
      clause is the place to add ordering if it is ever required.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg
from psycopg.rows import dict_row

from structwatch.alerting.errors import InternalError, UnavailableError
from structwatch.alerting.models import (
    Alert,
    AlertNote,
    AlertSeverity,
    AlertStatus,
    CurrentReading,
    ReadingMetadata,
    Sensor,
    SensorLatestReading,
    SensorReading,
    ThresholdRange,
    Thresholds,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

DEFAULT_ALERT_LIMIT = 50
DEFAULT_READING_LIMIT = 1000

# ---------------------------------------------------------------------------
# Repository Interface
# ---------------------------------------------------------------------------


class Repository(ABC):
    """Abstract base for alerting data access."""

    @abstractmethod
    def get_sensor(self, sensor_id: str) -> Sensor | None:
        """Fetch a sensor by storage id. Returns None if absent."""
        ...

    @abstractmethod
    def insert_reading(self, reading: SensorReading) -> SensorReading:
        """Persist a new immutable reading and return it."""
        ...

    @abstractmethod
    def update_current_reading(
        self, sensor_id: str, current: CurrentReading
    ) -> None:
        """Overwrite the sensor's cached current-reading snapshot."""
        ...

    @abstractmethod
    def insert_alert(self, alert: Alert) -> Alert:
        """Persist a new alert and return the stored version."""
        ...

    @abstractmethod
    def get_alert(self, alert_id: str) -> Alert | None:
        """Fetch an alert by id. Returns None if absent."""
        ...

    @abstractmethod
    def transition_alert(
        self,
        alert_id: str,
        target: AlertStatus,
        allowed_from: Sequence[AlertStatus],
        by_user: str,
        at: datetime,
    ) -> Alert | None:
        """Atomically move an alert to ``target`` and stamp the audit fields.

        The update only applies when the alert's current status is in
        ``allowed_from``.

        Parameters
        ----------
        alert_id : str
            Alert to update.
        target : AlertStatus
            New status. Must be ``ACKNOWLEDGED``, ``RESOLVED`` or
            ``DISMISSED``.
        allowed_from : Sequence[AlertStatus]
            Statuses from which the transition is permitted.
        by_user : str
            Caller identity recorded in ``<target>_by``.
        at : datetime
            Time recorded in ``<target>_at`` and ``updated_at``.

        Returns
        -------
        Alert or None
            The updated alert, or None when no alert matched (either missing
            or in a status outside ``allowed_from``).
        """
        ...

    @abstractmethod
    def append_alert_note(
        self, alert_id: str, note: AlertNote
    ) -> Alert | None:
        """Atomically append ``note`` to the alert's notes log.

        Returns the updated alert, or None if the alert does not exist.
        """
        ...

    @abstractmethod
    def list_alerts(
        self,
        project_id: str | None = None,
        status: AlertStatus | None = None,
        severity: AlertSeverity | None = None,
        limit: int = DEFAULT_ALERT_LIMIT,
    ) -> list[Alert]:
        """List alerts newest first, optionally filtered."""
        ...

    @abstractmethod
    def list_readings(
        self,
        sensor_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_READING_LIMIT,
    ) -> list[SensorReading]:
        """List a sensor's readings newest first within ``[start, end]``."""
        ...

    @abstractmethod
    def latest_readings(self, project_id: str) -> list[SensorLatestReading]:
        """Return every sensor of a project with its newest reading.

        Sensors without readings are included with ``latest_reading=None``.
        """
        ...


# ---------------------------------------------------------------------------
# SQL Constants
# ---------------------------------------------------------------------------

_SENSOR_COLUMNS = """\
    id,
    sensor_id,
    sensor_name,
    project_id,
    sensor_type,
    status,
    thresholds,
    current_reading,
    data_retention_days,
    is_active,
    created_at,
    updated_at"""

_FETCH_SENSOR_SQL = f"""\
SELECT
{_SENSOR_COLUMNS}
FROM sensors
WHERE id = %s
"""

_LIST_PROJECT_SENSORS_SQL = f"""\
SELECT
{_SENSOR_COLUMNS}
FROM sensors
WHERE project_id = %s
ORDER BY sensor_id
"""

_INSERT_READING_SQL = """\
INSERT INTO sensor_readings (
    id,
    sensor_id,
    project_id,
    timestamp,
    value,
    unit,
    quality,
    metadata,
    is_anomaly,
    anomaly_reason
) VALUES (
    %(id)s,
    %(sensor_id)s,
    %(project_id)s,
    %(timestamp)s,
    %(value)s,
    %(unit)s,
    %(quality)s,
    %(metadata)s::jsonb,
    %(is_anomaly)s,
    %(anomaly_reason)s
)
"""

# Last write wins: no ordering condition on the snapshot timestamp.
_UPDATE_CURRENT_READING_SQL = """\
UPDATE sensors
SET current_reading = %s::jsonb,
    updated_at = %s
WHERE id = %s
"""

_READING_COLUMNS = """\
    id,
    sensor_id,
    project_id,
    timestamp,
    value,
    unit,
    quality,
    metadata,
    is_anomaly,
    anomaly_reason"""

_ALERT_COLUMNS = """\
    id,
    project_id,
    sensor_id,
    alert_type,
    severity,
    title,
    message,
    value,
    threshold,
    status,
    acknowledged_by,
    acknowledged_at,
    resolved_by,
    resolved_at,
    dismissed_by,
    dismissed_at,
    notes,
    created_at,
    updated_at"""

_INSERT_ALERT_SQL = f"""\
INSERT INTO alerts (
    id,
    project_id,
    sensor_id,
    alert_type,
    severity,
    title,
    message,
    value,
    threshold,
    status,
    notes,
    created_at,
    updated_at
) VALUES (
    %(id)s,
    %(project_id)s,
    %(sensor_id)s,
    %(alert_type)s,
    %(severity)s,
    %(title)s,
    %(message)s,
    %(value)s,
    %(threshold)s::jsonb,
    %(status)s,
    %(notes)s::jsonb,
    %(created_at)s,
    %(updated_at)s
)
RETURNING
{_ALERT_COLUMNS}
"""

_FETCH_ALERT_SQL = f"""\
SELECT
{_ALERT_COLUMNS}
FROM alerts
WHERE id = %s
"""


def _transition_sql(by_column: str, at_column: str) -> str:
    return f"""\
UPDATE alerts
SET status = %(status)s,
    {by_column} = %(by_user)s,
    {at_column} = %(at)s,
    updated_at = %(at)s
WHERE id = %(alert_id)s
  AND status = ANY(%(allowed_from)s)
RETURNING
{_ALERT_COLUMNS}
"""


_TRANSITION_SQL: dict[AlertStatus, str] = {
    AlertStatus.ACKNOWLEDGED: _transition_sql("acknowledged_by", "acknowledged_at"),
    AlertStatus.RESOLVED: _transition_sql("resolved_by", "resolved_at"),
    AlertStatus.DISMISSED: _transition_sql("dismissed_by", "dismissed_at"),
}

# Append happens inside the UPDATE; concurrent appends serialize on the row lock.
_APPEND_NOTE_SQL = f"""\
UPDATE alerts
SET notes = COALESCE(notes, '[]'::jsonb) || %(note)s::jsonb,
    updated_at = %(at)s
WHERE id = %(alert_id)s
RETURNING
{_ALERT_COLUMNS}
"""

_LIST_ALERTS_SQL = f"""\
SELECT
{_ALERT_COLUMNS}
FROM alerts
"""

_LIST_READINGS_SQL = f"""\
SELECT
{_READING_COLUMNS}
FROM sensor_readings
WHERE sensor_id = %s
"""

# One row per sensor: the newest reading, via the (sensor_id, timestamp DESC)
# index.
_LATEST_READINGS_SQL = f"""\
SELECT DISTINCT ON (sensor_id)
{_READING_COLUMNS}
FROM sensor_readings
WHERE sensor_id = ANY(%s)
ORDER BY sensor_id, timestamp DESC
"""


# ---------------------------------------------------------------------------
# Row -> Model Mapping Helpers
# ---------------------------------------------------------------------------


def _as_utc(ts: datetime | None) -> datetime | None:
    """Naive datetimes are UTC."""
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _load_json(raw: object) -> object:
    """JSONB columns arrive as Python objects; tolerate JSON strings too."""
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _row_to_sensor(row: dict) -> Sensor:
    """Convert a ``sensors`` row to a Sensor model.

    ``thresholds`` and ``current_reading`` are JSONB documents.
    """
    thresholds = None
    thresholds_raw = _load_json(row.get("thresholds"))
    if thresholds_raw:
        thresholds = Thresholds(**thresholds_raw)

    current_reading = None
    current_raw = _load_json(row.get("current_reading"))
    if current_raw:
        current_reading = CurrentReading(**current_raw)

    return Sensor(
        id=row["id"],
        sensor_id=row["sensor_id"],
        sensor_name=row.get("sensor_name") or "",
        project_id=row["project_id"],
        sensor_type=row.get("sensor_type") or "other",
        status=row.get("status") or "active",
        thresholds=thresholds,
        current_reading=current_reading,
        data_retention_days=row.get("data_retention_days") or 365,
        is_active=row.get("is_active", True),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_reading(row: dict) -> SensorReading:
    """Convert a ``sensor_readings`` row to a SensorReading model."""
    metadata = None
    metadata_raw = _load_json(row.get("metadata"))
    if metadata_raw:
        metadata = ReadingMetadata(**metadata_raw)

    return SensorReading(
        id=row["id"],
        sensor_id=row["sensor_id"],
        project_id=row["project_id"],
        timestamp=row["timestamp"],
        value=row["value"],
        unit=row["unit"],
        quality=row.get("quality") or "good",
        metadata=metadata,
        is_anomaly=row.get("is_anomaly", False),
        anomaly_reason=row.get("anomaly_reason"),
    )


def _row_to_alert(row: dict) -> Alert:
    """Convert an ``alerts`` row to an Alert model.

    ``threshold`` and ``notes`` are JSONB documents.
    """
    threshold = None
    threshold_raw = _load_json(row.get("threshold"))
    if threshold_raw is not None:
        threshold = ThresholdRange(**threshold_raw)

    notes_raw = _load_json(row.get("notes")) or []
    notes = [AlertNote(**n) for n in notes_raw]

    return Alert(
        id=row["id"],
        project_id=row["project_id"],
        sensor_id=row.get("sensor_id"),
        alert_type=row["alert_type"],
        severity=row["severity"],
        title=row["title"],
        message=row["message"],
        value=row.get("value"),
        threshold=threshold,
        status=row.get("status") or "active",
        acknowledged_by=row.get("acknowledged_by"),
        acknowledged_at=row.get("acknowledged_at"),
        resolved_by=row.get("resolved_by"),
        resolved_at=row.get("resolved_at"),
        dismissed_by=row.get("dismissed_by"),
        dismissed_at=row.get("dismissed_at"),
        notes=notes,
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


def _reading_to_params(reading: SensorReading) -> dict:
    return {
        "id": reading.id,
        "sensor_id": reading.sensor_id,
        "project_id": reading.project_id,
        "timestamp": reading.timestamp,
        "value": reading.value,
        "unit": reading.unit,
        "quality": reading.quality.value,
        "metadata": (
            reading.metadata.model_dump_json()
            if reading.metadata is not None
            else None
        ),
        "is_anomaly": reading.is_anomaly,
        "anomaly_reason": reading.anomaly_reason,
    }


def _alert_to_params(alert: Alert) -> dict:
    """Convert an Alert to a parameter dict for the INSERT.

    Serializes the JSONB fields (``threshold``, ``notes``) to JSON strings.
    """
    return {
        "id": alert.id,
        "project_id": alert.project_id,
        "sensor_id": alert.sensor_id,
        "alert_type": alert.alert_type.value,
        "severity": alert.severity.value,
        "title": alert.title,
        "message": alert.message,
        "value": alert.value,
        "threshold": (
            alert.threshold.model_dump_json()
            if alert.threshold is not None
            else None
        ),
        "status": alert.status.value,
        "notes": json.dumps([n.model_dump(mode="json") for n in alert.notes]),
        "created_at": alert.created_at,
        "updated_at": alert.updated_at,
    }


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver errors into the alerting error taxonomy."""
    try:
        yield
    except psycopg.OperationalError as exc:
        # Connection failures and statement_timeout cancellations.
        logger.warning("Storage unavailable during %s: %s", operation, exc)
        raise UnavailableError(f"Storage unavailable during {operation}") from exc
    except psycopg.Error as exc:
        logger.exception("Storage error during %s", operation)
        raise InternalError(f"Storage error during {operation}") from exc


# ---------------------------------------------------------------------------
# Concrete Implementation: PostgresRepository
# ---------------------------------------------------------------------------


class PostgresRepository(Repository):
    """PostgreSQL-backed Repository using psycopg v3.

    Opens one short-lived connection per operation; pooling is handled
    externally (PgBouncer). The repository itself holds no connection, so a
    single instance can be shared across requests and threads.

    Parameters
    ----------
    conninfo : str
        PostgreSQL connection string (DSN).
    connect_timeout : int
        Seconds to wait for a connection before failing.
    statement_timeout_ms : int
        Server-side per-statement timeout in milliseconds.
    """

    def __init__(
        self,
        conninfo: str,
        connect_timeout: int = 5,
        statement_timeout_ms: int = 5000,
    ) -> None:
        self._conninfo = conninfo
        self._connect_timeout = connect_timeout
        self._statement_timeout_ms = statement_timeout_ms

    def _connect(self) -> psycopg.Connection:
        """Create a new database connection.

        Uses ``row_factory=dict_row`` for dict-based row access. The
        connection context manager commits on clean exit and rolls back on
        error.
        """
        return psycopg.connect(
            self._conninfo,
            row_factory=dict_row,
            autocommit=False,
            connect_timeout=self._connect_timeout,
            options=f"-c statement_timeout={self._statement_timeout_ms}",
        )

    def get_sensor(self, sensor_id: str) -> Sensor | None:
        with _storage_errors("get_sensor"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_FETCH_SENSOR_SQL, (sensor_id,))
                    row = cur.fetchone()

        if row is None:
            return None
        return _row_to_sensor(row)

    def insert_reading(self, reading: SensorReading) -> SensorReading:
        with _storage_errors("insert_reading"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_READING_SQL, _reading_to_params(reading))

        logger.debug(
            "Inserted reading %s for sensor=%s value=%s",
            reading.id,
            reading.sensor_id,
            reading.value,
        )
        return reading

    def update_current_reading(
        self, sensor_id: str, current: CurrentReading
    ) -> None:
        with _storage_errors("update_current_reading"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        _UPDATE_CURRENT_READING_SQL,
                        (
                            current.model_dump_json(),
                            datetime.now(timezone.utc),
                            sensor_id,
                        ),
                    )
                    updated = cur.rowcount

        if not updated:
            logger.warning(
                "current_reading not updated: sensor=%s no longer exists",
                sensor_id,
            )

    def insert_alert(self, alert: Alert) -> Alert:
        with _storage_errors("insert_alert"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_ALERT_SQL, _alert_to_params(alert))
                    row = cur.fetchone()

        if row is None:
            return alert
        return _row_to_alert(row)

    def get_alert(self, alert_id: str) -> Alert | None:
        with _storage_errors("get_alert"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_FETCH_ALERT_SQL, (alert_id,))
                    row = cur.fetchone()

        if row is None:
            return None
        return _row_to_alert(row)

    def transition_alert(
        self,
        alert_id: str,
        target: AlertStatus,
        allowed_from: Sequence[AlertStatus],
        by_user: str,
        at: datetime,
    ) -> Alert | None:
        sql = _TRANSITION_SQL.get(target)
        if sql is None:
            raise ValueError(f"Unsupported transition target: {target.value}")

        params = {
            "status": target.value,
            "by_user": by_user,
            "at": at,
            "alert_id": alert_id,
            "allowed_from": [s.value for s in allowed_from],
        }
        with _storage_errors("transition_alert"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()

        if row is None:
            return None
        return _row_to_alert(row)

    def append_alert_note(
        self, alert_id: str, note: AlertNote
    ) -> Alert | None:
        params = {
            "note": json.dumps([note.model_dump(mode="json")]),
            "at": note.timestamp,
            "alert_id": alert_id,
        }
        with _storage_errors("append_alert_note"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_APPEND_NOTE_SQL, params)
                    row = cur.fetchone()

        if row is None:
            return None
        return _row_to_alert(row)

    def list_alerts(
        self,
        project_id: str | None = None,
        status: AlertStatus | None = None,
        severity: AlertSeverity | None = None,
        limit: int = DEFAULT_ALERT_LIMIT,
    ) -> list[Alert]:
        clauses: list[str] = []
        params: list[object] = []
        if project_id is not None:
            clauses.append("project_id = %s")
            params.append(project_id)
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        if severity is not None:
            clauses.append("severity = %s")
            params.append(severity.value)

        sql = _LIST_ALERTS_SQL
        if clauses:
            sql += "WHERE " + " AND ".join(clauses) + "\n"
        sql += "ORDER BY created_at DESC\nLIMIT %s\n"
        params.append(limit)

        with _storage_errors("list_alerts"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, tuple(params))
                    rows = cur.fetchall()

        return [_row_to_alert(row) for row in rows]

    def list_readings(
        self,
        sensor_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_READING_LIMIT,
    ) -> list[SensorReading]:
        sql = _LIST_READINGS_SQL
        params: list[object] = [sensor_id]
        start, end = _as_utc(start), _as_utc(end)
        if start is not None:
            sql += "  AND timestamp >= %s\n"
            params.append(start)
        if end is not None:
            sql += "  AND timestamp <= %s\n"
            params.append(end)
        sql += "ORDER BY timestamp DESC\nLIMIT %s\n"
        params.append(limit)

        with _storage_errors("list_readings"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, tuple(params))
                    rows = cur.fetchall()

        return [_row_to_reading(row) for row in rows]

    def latest_readings(self, project_id: str) -> list[SensorLatestReading]:
        with _storage_errors("latest_readings"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_LIST_PROJECT_SENSORS_SQL, (project_id,))
                    sensors = [_row_to_sensor(row) for row in cur.fetchall()]
                    if not sensors:
                        return []
                    cur.execute(_LATEST_READINGS_SQL, ([s.id for s in sensors],))
                    latest = {
                        row["sensor_id"]: _row_to_reading(row)
                        for row in cur.fetchall()
                    }

        return [
            SensorLatestReading(sensor=s, latest_reading=latest.get(s.id))
            for s in sensors
        ]


# ---------------------------------------------------------------------------
# Concrete Implementation: InMemoryRepository
# ---------------------------------------------------------------------------


class InMemoryRepository(Repository):
    """Process-local Repository for local development and tests.

    A single lock guards all state, which gives every method the same
    atomicity the PostgreSQL implementation gets from single-statement
    updates. Models are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, sensors: Sequence[Sensor] = ()) -> None:
        self._lock = threading.Lock()
        self._sensors: dict[str, Sensor] = {}
        self._readings: dict[str, SensorReading] = {}
        self._alerts: dict[str, Alert] = {}
        for sensor in sensors:
            self.add_sensor(sensor)

    def add_sensor(self, sensor: Sensor) -> None:
        """Register a sensor. Sensor CRUD lives outside the alerting core."""
        with self._lock:
            self._sensors[sensor.id] = sensor.model_copy(deep=True)

    def get_sensor(self, sensor_id: str) -> Sensor | None:
        with self._lock:
            sensor = self._sensors.get(sensor_id)
            return sensor.model_copy(deep=True) if sensor else None

    def insert_reading(self, reading: SensorReading) -> SensorReading:
        with self._lock:
            self._readings[reading.id] = reading
        return reading

    def update_current_reading(
        self, sensor_id: str, current: CurrentReading
    ) -> None:
        with self._lock:
            sensor = self._sensors.get(sensor_id)
            if sensor is None:
                logger.warning(
                    "current_reading not updated: sensor=%s no longer exists",
                    sensor_id,
                )
                return
            self._sensors[sensor_id] = sensor.model_copy(
                update={
                    "current_reading": current.model_copy(),
                    "updated_at": datetime.now(timezone.utc),
                }
            )

    def insert_alert(self, alert: Alert) -> Alert:
        with self._lock:
            self._alerts[alert.id] = alert.model_copy(deep=True)
            return alert.model_copy(deep=True)

    def get_alert(self, alert_id: str) -> Alert | None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy(deep=True) if alert else None

    def transition_alert(
        self,
        alert_id: str,
        target: AlertStatus,
        allowed_from: Sequence[AlertStatus],
        by_user: str,
        at: datetime,
    ) -> Alert | None:
        if target not in _TRANSITION_SQL:
            raise ValueError(f"Unsupported transition target: {target.value}")

        prefix = target.value
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status not in allowed_from:
                return None
            updated = alert.model_copy(
                deep=True,
                update={
                    "status": target,
                    f"{prefix}_by": by_user,
                    f"{prefix}_at": at,
                    "updated_at": at,
                },
            )
            self._alerts[alert_id] = updated
            return updated.model_copy(deep=True)

    def append_alert_note(
        self, alert_id: str, note: AlertNote
    ) -> Alert | None:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            updated = alert.model_copy(
                deep=True,
                update={
                    "notes": [*alert.notes, note.model_copy()],
                    "updated_at": note.timestamp,
                },
            )
            self._alerts[alert_id] = updated
            return updated.model_copy(deep=True)

    def list_alerts(
        self,
        project_id: str | None = None,
        status: AlertStatus | None = None,
        severity: AlertSeverity | None = None,
        limit: int = DEFAULT_ALERT_LIMIT,
    ) -> list[Alert]:
        with self._lock:
            alerts = [
                a
                for a in self._alerts.values()
                if (project_id is None or a.project_id == project_id)
                and (status is None or a.status == status)
                and (severity is None or a.severity == severity)
            ]
            alerts.sort(key=lambda a: a.created_at, reverse=True)
            return [a.model_copy(deep=True) for a in alerts[:limit]]

    def list_readings(
        self,
        sensor_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_READING_LIMIT,
    ) -> list[SensorReading]:
        start, end = _as_utc(start), _as_utc(end)
        with self._lock:
            readings = [
                r
                for r in self._readings.values()
                if r.sensor_id == sensor_id
                and (start is None or r.timestamp >= start)
                and (end is None or r.timestamp <= end)
            ]
        readings.sort(key=lambda r: r.timestamp, reverse=True)
        return readings[:limit]

    def latest_readings(self, project_id: str) -> list[SensorLatestReading]:
        with self._lock:
            sensors = sorted(
                (s for s in self._sensors.values() if s.project_id == project_id),
                key=lambda s: s.sensor_id,
            )
            latest: dict[str, SensorReading] = {}
            for reading in self._readings.values():
                current = latest.get(reading.sensor_id)
                if current is None or reading.timestamp > current.timestamp:
                    latest[reading.sensor_id] = reading
            return [
                SensorLatestReading(
                    sensor=s.model_copy(deep=True), latest_reading=latest.get(s.id)
                )
                for s in sensors
            ]
