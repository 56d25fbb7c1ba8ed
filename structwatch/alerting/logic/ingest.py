"""
Reading ingest pipeline.

Implements ``ReadingIngestPipeline.ingest`` which records one new sensor
reading and reacts to it. Steps run strictly in order because each depends
on the previous one having committed:

    1. Look up the sensor (``NotFoundError`` if absent).
    2. Persist the immutable reading, stamped with the sensor's project and
       a server timestamp when the caller supplied none.
    3. Overwrite the sensor's ``current_reading`` snapshot (last write wins).
    4. Evaluate the sensor's thresholds against the reading.
    5. Persist any resulting alert and publish it.

The reading is the durability guarantee. A failure in step 5 is logged and
swallowed; it never rolls back steps 2-3 or fails the ingest.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from structwatch.alerting.errors import NotFoundError, ValidationError
from structwatch.alerting.logic.thresholds import evaluate
from structwatch.alerting.models import (
    Alert,
    AlertDraft,
    AlertStatus,
    CurrentReading,
    ReadingInput,
    Sensor,
    SensorReading,
)
from structwatch.alerting.publisher import AlertPublisher
from structwatch.alerting.repo import Repository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_reading_input(raw: ReadingInput | dict[str, Any]) -> ReadingInput:
    """Coerce caller input into a ``ReadingInput``.

    Raises
    ------
    ValidationError
        If the payload is malformed (e.g. non-numeric or non-finite value,
        missing unit, unknown quality tag).
    """
    if isinstance(raw, ReadingInput):
        return raw
    try:
        return ReadingInput.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid reading: {exc}") from exc


class ReadingIngestPipeline:
    """Orchestrates reading persistence, cache update and alerting.

    Parameters
    ----------
    repo : Repository
        Storage for sensors, readings and alerts.
    publisher : AlertPublisher or None
        Receives every newly persisted alert. If None, alerts are stored but
        not published.
    clock : callable or None
        Returns the current time; defaults to ``datetime.now(timezone.utc)``.
    """

    def __init__(
        self,
        repo: Repository,
        publisher: AlertPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._publisher = publisher
        self._clock = clock or _utcnow

    def ingest(
        self,
        sensor_id: str,
        reading_input: ReadingInput | dict[str, Any],
        trace_id: str = "",
    ) -> SensorReading:
        """Record one reading for ``sensor_id`` and raise any alert it causes.

        Returns
        -------
        SensorReading
            The persisted reading.

        Raises
        ------
        ValidationError
            If ``reading_input`` is malformed.
        NotFoundError
            If the sensor does not exist.
        UnavailableError
            If storage times out during steps 1-3.
        """
        data = parse_reading_input(reading_input)

        # Step 1: Sensor lookup
        sensor = self._repo.get_sensor(sensor_id)
        if sensor is None:
            raise NotFoundError("Sensor", sensor_id)

        # Step 2: Persist the reading
        timestamp = data.timestamp or self._clock()
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        reading = self._repo.insert_reading(
            SensorReading(
                id=f"rdg_{uuid.uuid4()}",
                sensor_id=sensor.id,
                project_id=sensor.project_id,
                timestamp=timestamp,
                value=data.value,
                unit=data.unit,
                quality=data.quality,
                metadata=data.metadata,
                is_anomaly=data.is_anomaly,
                anomaly_reason=data.anomaly_reason,
            )
        )

        # Step 3: Refresh the cached snapshot
        self._repo.update_current_reading(
            sensor.id,
            CurrentReading(
                value=reading.value,
                timestamp=reading.timestamp,
                unit=reading.unit,
            ),
        )

        # Step 4: Threshold evaluation
        draft = evaluate(sensor.thresholds, reading, sensor.sensor_name)

        logger.info(
            "Ingested reading %s sensor=%s value=%s%s alert=%s trace_id=%s",
            reading.id,
            sensor.id,
            reading.value,
            reading.unit,
            draft.severity.value if draft else "none",
            trace_id,
        )

        # Step 5: Best-effort alert creation
        if draft is not None:
            self._raise_alert(sensor, draft, trace_id)

        return reading

    def _raise_alert(
        self, sensor: Sensor, draft: AlertDraft, trace_id: str
    ) -> Alert | None:
        now = self._clock()
        try:
            alert = self._repo.insert_alert(
                Alert(
                    id=f"alrt_{uuid.uuid4()}",
                    project_id=sensor.project_id,
                    sensor_id=sensor.id,
                    alert_type=draft.alert_type,
                    severity=draft.severity,
                    title=draft.title,
                    message=draft.message,
                    value=draft.value,
                    threshold=draft.threshold,
                    status=AlertStatus.ACTIVE,
                    created_at=now,
                    updated_at=now,
                )
            )
        except Exception:
            logger.exception(
                "Failed to create %s alert for sensor=%s value=%s. "
                "Reading is stored; alert can be re-derived.",
                draft.alert_type.value,
                sensor.id,
                draft.value,
            )
            return None

        if self._publisher is not None:
            try:
                self._publisher.publish(alert, trace_id=trace_id)
            except Exception:
                logger.exception(
                    "Failed to publish alert %s for sensor=%s. "
                    "Alert is stored with status=%s.",
                    alert.id,
                    sensor.id,
                    alert.status.value,
                )

        return alert
