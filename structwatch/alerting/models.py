"""
Domain models for the alerting core.

Pydantic v2 models for sensors, readings, thresholds and alerts, plus the
queue message schemas consumed by the ingest worker and produced by the
alert publisher.

All JSON field names use ``snake_case``. The same names are used for the
JSONB documents stored in PostgreSQL and for the HTTP API payloads.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SensorType(str, Enum):
    ACCELEROMETER = "accelerometer"
    STRAIN_GAUGE = "strain_gauge"
    DISPLACEMENT = "displacement"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    VIBRATION = "vibration"
    TILT = "tilt"
    CRACK = "crack"
    WIND_SPEED = "wind_speed"
    WIND_DIRECTION = "wind_direction"
    OTHER = "other"


class SensorStatus(str, Enum):
    """Operational status of a sensor."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    FAULTY = "faulty"


class ReadingQuality(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    INVALID = "invalid"


class AlertType(str, Enum):
    THRESHOLD_WARNING = "threshold_warning"
    THRESHOLD_CRITICAL = "threshold_critical"
    SENSOR_OFFLINE = "sensor_offline"
    DATA_ANOMALY = "data_anomaly"
    SYSTEM = "system"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Alert lifecycle state.

    ``RESOLVED`` and ``DISMISSED`` are terminal.
    """

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------


class ThresholdRange(BaseModel):
    """An acceptable band for one severity tier.

    Either bound may be absent, meaning "no limit on that side".
    """

    model_config = {"frozen": True}

    min: float | None = None
    max: float | None = None


class Thresholds(BaseModel):
    """Per-sensor threshold configuration."""

    model_config = {"frozen": True}

    warning: ThresholdRange | None = None
    critical: ThresholdRange | None = None


class CurrentReading(BaseModel):
    """Cached snapshot of the most recently ingested reading."""

    value: float
    timestamp: datetime
    unit: str


class ReadingMetadata(BaseModel):
    """Optional device telemetry attached to a reading."""

    temperature: float | None = None
    humidity: float | None = None
    battery_level: float | None = None
    signal_strength: float | None = None


# ---------------------------------------------------------------------------
# Domain Entities
# ---------------------------------------------------------------------------


class Sensor(BaseModel):
    """Sensor as loaded from storage.

    ``id`` is the storage identity used by every cross-entity reference;
    ``sensor_id`` is the unique human-facing code printed on the device.
    """

    id: str
    sensor_id: str
    sensor_name: str
    project_id: str
    sensor_type: SensorType = SensorType.OTHER
    status: SensorStatus = SensorStatus.ACTIVE

    thresholds: Thresholds | None = None
    current_reading: CurrentReading | None = None

    data_retention_days: int = 365
    is_active: bool = True

    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReadingInput(BaseModel):
    """Caller-supplied reading, before it is stamped and persisted."""

    value: float = Field(allow_inf_nan=False)
    unit: str = Field(min_length=1)
    timestamp: datetime | None = None
    quality: ReadingQuality = ReadingQuality.GOOD
    metadata: ReadingMetadata | None = None
    is_anomaly: bool = False
    anomaly_reason: str | None = None

    @field_validator("unit")
    @classmethod
    def _unit_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("unit must not be blank")
        return v


class SensorReading(BaseModel):
    """Immutable reading fact. Never updated after creation."""

    model_config = {"frozen": True}

    id: str
    sensor_id: str
    project_id: str
    timestamp: datetime
    value: float
    unit: str
    quality: ReadingQuality = ReadingQuality.GOOD
    metadata: ReadingMetadata | None = None
    is_anomaly: bool = False
    anomaly_reason: str | None = None


class SensorLatestReading(BaseModel):
    """A project sensor paired with its newest reading, if it has one."""

    sensor: Sensor
    latest_reading: SensorReading | None = None


class AlertNote(BaseModel):
    """One entry in an alert's append-only notes log."""

    user: str
    note: str
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class AlertDraft(BaseModel):
    """In-memory candidate alert produced by the threshold evaluator."""

    model_config = {"frozen": True}

    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    value: float
    threshold: ThresholdRange


class Alert(BaseModel):
    """Persisted alert.

    Created by the ingest pipeline with ``status=active``; mutated only by
    the lifecycle manager afterwards.
    """

    id: str
    project_id: str
    sensor_id: str | None = None

    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    value: float | None = None
    threshold: ThresholdRange | None = None

    status: AlertStatus = AlertStatus.ACTIVE

    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    dismissed_by: str | None = None
    dismissed_at: datetime | None = None

    notes: list[AlertNote] = []

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Queue Messages
# ---------------------------------------------------------------------------


class IngestMessage(ReadingInput):
    """SQS payload consumed by the ingest worker.

    A ``ReadingInput`` plus the target sensor and an optional trace id.
    """

    sensor_id: str = Field(min_length=1)
    trace_id: str = ""

    def to_reading_input(self) -> ReadingInput:
        return ReadingInput(
            **self.model_dump(exclude={"sensor_id", "trace_id"}),
        )


class AlertEvent(BaseModel):
    """Message published to the alert queue after an alert is persisted."""

    event_type: str = "alert_created"
    trace_id: str = ""
    alert: Alert
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
