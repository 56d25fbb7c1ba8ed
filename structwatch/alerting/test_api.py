"""
Tests for the HTTP API.

Drives the FastAPI app through ``TestClient`` with an ``InMemoryRepository``
so routes, the response envelope, caller identity and the error mapping are
exercised together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from structwatch.alerting.api import create_app
from structwatch.alerting.errors import InternalError, UnavailableError
from structwatch.alerting.models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    Sensor,
    ThresholdRange,
    Thresholds,
)
from structwatch.alerting.repo import InMemoryRepository, Repository

NOW = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
USER = {"X-User-Id": "user_001"}


def _make_sensor(**overrides) -> Sensor:
    defaults = dict(
        id="sns_001",
        sensor_id="SW-DECK-01",
        sensor_name="Deck Strain 01",
        project_id="proj_001",
        thresholds=Thresholds(
            warning=ThresholdRange(max=50), critical=ThresholdRange(max=100)
        ),
    )
    defaults.update(overrides)
    return Sensor(**defaults)


def _make_alert(**overrides) -> Alert:
    defaults = dict(
        id="alrt_001",
        project_id="proj_001",
        sensor_id="sns_001",
        alert_type=AlertType.THRESHOLD_CRITICAL,
        severity=AlertSeverity.CRITICAL,
        title="Deck Strain 01 critical threshold exceeded",
        message="Sensor reading of 150mm exceeds critical threshold",
        value=150.0,
        threshold=ThresholdRange(max=100),
        created_at=NOW,
    )
    defaults.update(overrides)
    return Alert(**defaults)


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository([_make_sensor()])


@pytest.fixture
def client(repo: InMemoryRepository) -> TestClient:
    return TestClient(create_app(repo=repo))


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}


class TestAuth:
    def test_missing_user_is_401(self, client: TestClient) -> None:
        response = client.get("/api/v1/alerts")

        assert response.status_code == 401


class TestReadings:
    def test_add_reading_creates_alert(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        response = client.post(
            "/api/v1/sensors/sns_001/readings",
            json={"value": 150, "unit": "mm"},
            headers=USER,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Reading added successfully"
        assert body["data"]["value"] == 150
        assert body["data"]["project_id"] == "proj_001"

        alerts = repo.list_alerts()
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.CRITICAL

    def test_add_reading_unknown_sensor_is_404(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/sensors/sns_missing/readings",
            json={"value": 1, "unit": "mm"},
            headers=USER,
        )

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "message": "Sensor not found: sns_missing",
        }

    @pytest.mark.parametrize(
        "payload",
        [{"value": "abc", "unit": "mm"}, {"unit": "mm"}, {"value": 1, "unit": ""}],
    )
    def test_add_reading_invalid_body_is_400(
        self, client: TestClient, payload: dict
    ) -> None:
        response = client.post(
            "/api/v1/sensors/sns_001/readings", json=payload, headers=USER
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_get_readings_newest_first(self, client: TestClient) -> None:
        for hours, value in [(0, 1), (2, 3), (1, 2)]:
            client.post(
                "/api/v1/sensors/sns_001/readings",
                json={
                    "value": value,
                    "unit": "mm",
                    "timestamp": (NOW + timedelta(hours=hours)).isoformat(),
                },
                headers=USER,
            )

        response = client.get(
            "/api/v1/sensors/sns_001/readings",
            params={"start_date": (NOW + timedelta(minutes=30)).isoformat()},
            headers=USER,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["count"] == 2
        assert [r["value"] for r in body["data"]] == [3, 2]

    def test_get_readings_naive_start_date(self, client: TestClient) -> None:
        client.post(
            "/api/v1/sensors/sns_001/readings",
            json={"value": 10, "unit": "mm", "timestamp": NOW.isoformat()},
            headers=USER,
        )

        response = client.get(
            "/api/v1/sensors/sns_001/readings",
            params={"start_date": "2020-01-01T00:00:00"},
            headers=USER,
        )

        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_latest_readings_for_project(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        repo.add_sensor(_make_sensor(id="sns_002", sensor_id="SW-DECK-02"))
        for hours, value in [(0, 1), (1, 2)]:
            client.post(
                "/api/v1/sensors/sns_001/readings",
                json={
                    "value": value,
                    "unit": "mm",
                    "timestamp": (NOW + timedelta(hours=hours)).isoformat(),
                },
                headers=USER,
            )

        response = client.get("/api/v1/sensors/project/proj_001/latest", headers=USER)

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert [item["sensor"]["id"] for item in body["data"]] == ["sns_001", "sns_002"]
        assert body["data"][0]["latest_reading"]["value"] == 2
        assert body["data"][1]["latest_reading"] is None


class TestAlertQueries:
    def test_list_alerts_filters(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        repo.insert_alert(_make_alert())
        repo.insert_alert(
            _make_alert(
                id="alrt_002",
                severity=AlertSeverity.HIGH,
                alert_type=AlertType.THRESHOLD_WARNING,
                created_at=NOW + timedelta(minutes=5),
            )
        )

        all_alerts = client.get("/api/v1/alerts", headers=USER).json()
        high = client.get(
            "/api/v1/alerts", params={"severity": "high"}, headers=USER
        ).json()

        assert [a["id"] for a in all_alerts["data"]] == ["alrt_002", "alrt_001"]
        assert high["count"] == 1
        assert high["data"][0]["id"] == "alrt_002"

    def test_unknown_status_filter_is_400(self, client: TestClient) -> None:
        response = client.get(
            "/api/v1/alerts", params={"status": "snoozed"}, headers=USER
        )

        assert response.status_code == 400

    def test_get_alert(self, client: TestClient, repo: InMemoryRepository) -> None:
        repo.insert_alert(_make_alert())

        response = client.get("/api/v1/alerts/alrt_001", headers=USER)

        assert response.status_code == 200
        assert response.json()["data"]["title"] == (
            "Deck Strain 01 critical threshold exceeded"
        )

    def test_get_unknown_alert_is_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/alerts/nope", headers=USER).status_code == 404


class TestAlertLifecycle:
    def test_acknowledge_records_caller(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        repo.insert_alert(_make_alert())

        response = client.put("/api/v1/alerts/alrt_001/acknowledge", headers=USER)

        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "Alert acknowledged"
        assert body["data"]["status"] == "acknowledged"
        assert body["data"]["acknowledged_by"] == "user_001"

    def test_acknowledge_unknown_alert_is_404(self, client: TestClient) -> None:
        response = client.put("/api/v1/alerts/alrt_missing/acknowledge", headers=USER)

        assert response.status_code == 404

    def test_resolve_then_dismiss_is_400(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        repo.insert_alert(_make_alert())

        resolved = client.put("/api/v1/alerts/alrt_001/resolve", headers=USER)
        dismissed = client.put("/api/v1/alerts/alrt_001/dismiss", headers=USER)

        assert resolved.json()["data"]["status"] == "resolved"
        assert dismissed.status_code == 400
        assert repo.get_alert("alrt_001").status == AlertStatus.RESOLVED

    def test_resolve_dismissed_alert(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        repo.insert_alert(_make_alert(status=AlertStatus.DISMISSED))

        response = client.put("/api/v1/alerts/alrt_001/resolve", headers=USER)

        body = response.json()
        assert response.status_code == 200
        assert body["data"]["status"] == "resolved"
        assert body["data"]["resolved_by"] == "user_001"

    def test_dismiss(self, client: TestClient, repo: InMemoryRepository) -> None:
        repo.insert_alert(_make_alert())

        response = client.put("/api/v1/alerts/alrt_001/dismiss", headers=USER)

        assert response.json()["data"]["dismissed_by"] == "user_001"

    def test_add_note(self, client: TestClient, repo: InMemoryRepository) -> None:
        repo.insert_alert(_make_alert())

        response = client.post(
            "/api/v1/alerts/alrt_001/notes",
            json={"note": "Crew dispatched"},
            headers=USER,
        )

        body = response.json()
        assert body["message"] == "Note added to alert"
        assert body["data"]["notes"][0]["user"] == "user_001"
        assert body["data"]["notes"][0]["note"] == "Crew dispatched"

    def test_blank_note_is_400(
        self, client: TestClient, repo: InMemoryRepository
    ) -> None:
        repo.insert_alert(_make_alert())

        response = client.post(
            "/api/v1/alerts/alrt_001/notes", json={"note": "  "}, headers=USER
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Note text must not be empty"


class TestErrorMapping:
    def test_unavailable_is_503(self) -> None:
        repo = MagicMock(spec=Repository)
        repo.get_alert.side_effect = UnavailableError("timeout")
        client = TestClient(create_app(repo=repo))

        response = client.get("/api/v1/alerts/alrt_001", headers=USER)

        assert response.status_code == 503
        assert response.json()["success"] is False

    def test_unexpected_error_is_500(self) -> None:
        repo = MagicMock(spec=Repository)
        repo.list_alerts.side_effect = RuntimeError("boom")
        client = TestClient(create_app(repo=repo), raise_server_exceptions=False)

        response = client.get("/api/v1/alerts", headers=USER)

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "message": "Internal server error",
        }

    def test_internal_error_logged_with_traceback(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        repo = MagicMock(spec=Repository)
        repo.get_alert.side_effect = InternalError("driver failure")
        client = TestClient(create_app(repo=repo))

        with caplog.at_level(logging.ERROR, logger="structwatch.alerting.api"):
            response = client.get("/api/v1/alerts/alrt_001", headers=USER)

        assert response.status_code == 500
        record = next(
            r for r in caplog.records if r.name == "structwatch.alerting.api"
        )
        assert record.exc_info is not None
        assert record.exc_info[1] is repo.get_alert.side_effect
