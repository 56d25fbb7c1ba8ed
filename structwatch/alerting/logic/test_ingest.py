"""
Tests for the reading ingest pipeline.

End-to-end through ``InMemoryRepository``:
    1. Critical breach creates one alert and refreshes the current reading.
    2. Warning + critical breach yields a single critical alert.
    3. No thresholds: reading stored, no alert.
    4. Unknown sensor raises NotFoundError and writes nothing.

Plus failure isolation: alert insert / publish failures never fail ingest.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from structwatch.alerting.errors import NotFoundError, UnavailableError, ValidationError
from structwatch.alerting.logic.ingest import ReadingIngestPipeline, parse_reading_input
from structwatch.alerting.models import (
    AlertSeverity,
    AlertStatus,
    ReadingInput,
    ReadingQuality,
    Sensor,
    ThresholdRange,
    Thresholds,
)
from structwatch.alerting.publisher import AlertPublisher
from structwatch.alerting.repo import InMemoryRepository, Repository

NOW = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
SENSOR_ID = "sns_001"
PROJECT_ID = "proj_001"


def _make_sensor(thresholds: Thresholds | None = None, **overrides) -> Sensor:
    defaults = dict(
        id=SENSOR_ID,
        sensor_id="SW-DECK-01",
        sensor_name="Deck Strain 01",
        project_id=PROJECT_ID,
        thresholds=thresholds,
    )
    defaults.update(overrides)
    return Sensor(**defaults)


def _make_pipeline(
    sensor: Sensor | None = None,
    publisher: AlertPublisher | None = None,
) -> tuple[ReadingIngestPipeline, InMemoryRepository]:
    repo = InMemoryRepository([sensor] if sensor else [])
    return ReadingIngestPipeline(repo, publisher, clock=lambda: NOW), repo


class TestEndToEnd:
    def test_critical_breach_creates_alert(self) -> None:
        sensor = _make_sensor(Thresholds(critical=ThresholdRange(max=100)))
        pipeline, repo = _make_pipeline(sensor)

        reading = pipeline.ingest(SENSOR_ID, {"value": 150, "unit": "mm"})

        assert reading.value == 150
        assert reading.project_id == PROJECT_ID
        assert reading.timestamp == NOW

        alerts = repo.list_alerts()
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.threshold == ThresholdRange(max=100)
        assert alert.status == AlertStatus.ACTIVE
        assert alert.sensor_id == SENSOR_ID
        assert alert.project_id == PROJECT_ID
        assert alert.title == "Deck Strain 01 critical threshold exceeded"

        current = repo.get_sensor(SENSOR_ID).current_reading
        assert current.value == 150
        assert current.unit == "mm"
        assert current.timestamp == NOW

    def test_critical_suppresses_warning(self) -> None:
        sensor = _make_sensor(
            Thresholds(
                warning=ThresholdRange(max=50),
                critical=ThresholdRange(max=100),
            )
        )
        pipeline, repo = _make_pipeline(sensor)

        pipeline.ingest(SENSOR_ID, {"value": 120, "unit": "mm"})

        alerts = repo.list_alerts()
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.CRITICAL

    def test_no_thresholds_no_alert(self) -> None:
        pipeline, repo = _make_pipeline(_make_sensor())

        reading = pipeline.ingest(SENSOR_ID, {"value": 1e6, "unit": "mm"})

        assert repo.list_readings(SENSOR_ID) == [reading]
        assert repo.list_alerts() == []

    def test_unknown_sensor_writes_nothing(self) -> None:
        pipeline, repo = _make_pipeline()

        with pytest.raises(NotFoundError) as exc_info:
            pipeline.ingest("sns_missing", {"value": 1, "unit": "mm"})

        assert exc_info.value.kind == "Sensor"
        assert repo.list_readings("sns_missing") == []
        assert repo.list_alerts() == []


class TestReadingFields:
    def test_caller_timestamp_kept(self) -> None:
        pipeline, _ = _make_pipeline(_make_sensor())
        ts = datetime(2026, 2, 28, 23, 59, tzinfo=timezone.utc)

        reading = pipeline.ingest(
            SENSOR_ID, ReadingInput(value=1.5, unit="mm", timestamp=ts)
        )

        assert reading.timestamp == ts

    def test_naive_timestamp_treated_as_utc(self) -> None:
        pipeline, _ = _make_pipeline(_make_sensor())

        reading = pipeline.ingest(
            SENSOR_ID,
            {"value": 1.5, "unit": "mm", "timestamp": "2026-02-28T12:00:00"},
        )

        assert reading.timestamp == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)

    def test_optional_fields_carried(self) -> None:
        pipeline, _ = _make_pipeline(_make_sensor())

        reading = pipeline.ingest(
            SENSOR_ID,
            {
                "value": 3,
                "unit": "mm",
                "quality": "poor",
                "metadata": {"battery_level": 12.5},
                "is_anomaly": True,
                "anomaly_reason": "spike",
            },
        )

        assert reading.quality == ReadingQuality.POOR
        assert reading.metadata.battery_level == 12.5
        assert reading.is_anomaly is True
        assert reading.anomaly_reason == "spike"

    def test_reading_ids_unique(self) -> None:
        pipeline, _ = _make_pipeline(_make_sensor())

        first = pipeline.ingest(SENSOR_ID, {"value": 1, "unit": "mm"})
        second = pipeline.ingest(SENSOR_ID, {"value": 1, "unit": "mm"})

        assert first.id != second.id
        assert first.id.startswith("rdg_")


class TestValidation:
    @pytest.mark.parametrize(
        "payload",
        [
            {"value": "abc", "unit": "mm"},
            {"value": float("nan"), "unit": "mm"},
            {"value": float("inf"), "unit": "mm"},
            {"value": 1},
            {"value": 1, "unit": "   "},
            {"value": 1, "unit": "mm", "quality": "excellent"},
        ],
    )
    def test_malformed_input_rejected(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            parse_reading_input(payload)

    def test_validation_happens_before_lookup(self) -> None:
        repo = MagicMock(spec=Repository)
        pipeline = ReadingIngestPipeline(repo)

        with pytest.raises(ValidationError):
            pipeline.ingest(SENSOR_ID, {"value": "abc", "unit": "mm"})

        repo.get_sensor.assert_not_called()


class TestFailureIsolation:
    def test_alert_insert_failure_does_not_fail_ingest(self) -> None:
        sensor = _make_sensor(Thresholds(critical=ThresholdRange(max=100)))
        repo = MagicMock(spec=Repository)
        repo.get_sensor.return_value = sensor
        repo.insert_reading.side_effect = lambda r: r
        repo.insert_alert.side_effect = UnavailableError("timeout")
        publisher = MagicMock(spec=AlertPublisher)
        pipeline = ReadingIngestPipeline(repo, publisher, clock=lambda: NOW)

        reading = pipeline.ingest(SENSOR_ID, {"value": 150, "unit": "mm"})

        assert reading.value == 150
        repo.update_current_reading.assert_called_once()
        publisher.publish.assert_not_called()

    def test_publish_failure_keeps_alert(self) -> None:
        sensor = _make_sensor(Thresholds(critical=ThresholdRange(max=100)))
        publisher = MagicMock(spec=AlertPublisher)
        publisher.publish.side_effect = RuntimeError("sqs down")
        pipeline, repo = _make_pipeline(sensor, publisher)

        pipeline.ingest(SENSOR_ID, {"value": 150, "unit": "mm"}, trace_id="tr-1")

        assert len(repo.list_alerts()) == 1
        publisher.publish.assert_called_once()
        assert publisher.publish.call_args.kwargs["trace_id"] == "tr-1"

    def test_publish_receives_stored_alert(self) -> None:
        sensor = _make_sensor(Thresholds(warning=ThresholdRange(min=0)))
        publisher = MagicMock(spec=AlertPublisher)
        pipeline, repo = _make_pipeline(sensor, publisher)

        pipeline.ingest(SENSOR_ID, {"value": -1, "unit": "mm"})

        published = publisher.publish.call_args.args[0]
        assert published == repo.list_alerts()[0]
        assert published.severity == AlertSeverity.HIGH

    def test_reading_failure_propagates(self) -> None:
        repo = MagicMock(spec=Repository)
        repo.get_sensor.return_value = _make_sensor()
        repo.insert_reading.side_effect = UnavailableError("timeout")
        pipeline = ReadingIngestPipeline(repo)

        with pytest.raises(UnavailableError):
            pipeline.ingest(SENSOR_ID, {"value": 1, "unit": "mm"})

        repo.update_current_reading.assert_not_called()
