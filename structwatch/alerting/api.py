"""
HTTP API for reading ingest, alert lifecycle actions and alert queries.

The caller identity comes from the ``X-User-Id`` header, which the external
auth middleware sets after authenticating the request.

Error mapping:
    - ``NotFoundError``    -> 404
    - ``ValidationError``  -> 400 (request body validation errors too)
    - ``UnavailableError`` -> 503
    - anything else        -> 500
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from structwatch.alerting.config import load_settings
from structwatch.alerting.errors import (
    AlertingError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from structwatch.alerting.logic.ingest import ReadingIngestPipeline
from structwatch.alerting.logic.lifecycle import AlertLifecycleManager
from structwatch.alerting.models import AlertSeverity, AlertStatus, ReadingInput
from structwatch.alerting.repo import (
    DEFAULT_ALERT_LIMIT,
    DEFAULT_READING_LIMIT,
    Repository,
)

logger = logging.getLogger(__name__)


class NoteRequest(BaseModel):
    note: str


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return x_user_id


def get_repo(request: Request) -> Repository:
    return request.app.state.repo


def get_pipeline(request: Request) -> ReadingIngestPipeline:
    return request.app.state.pipeline


def get_lifecycle(request: Request) -> AlertLifecycleManager:
    return request.app.state.lifecycle


CurrentUser = Annotated[str, Depends(get_current_user)]


def _envelope(data: Any, message: str | None = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body.update(extra)
    body["data"] = data
    return body


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter()


@router.post("/sensors/{sensor_id}/readings", status_code=201)
def add_sensor_reading(
    sensor_id: str,
    payload: ReadingInput,
    user: CurrentUser,
    pipeline: Annotated[ReadingIngestPipeline, Depends(get_pipeline)],
):
    reading = pipeline.ingest(sensor_id, payload)
    return _envelope(
        reading.model_dump(mode="json"), message="Reading added successfully"
    )


@router.get("/sensors/project/{project_id}/latest")
def get_latest_readings(
    project_id: str,
    user: CurrentUser,
    repo: Annotated[Repository, Depends(get_repo)],
):
    items = repo.latest_readings(project_id)
    return _envelope([item.model_dump(mode="json") for item in items])


@router.get("/sensors/{sensor_id}/readings")
def get_sensor_readings(
    sensor_id: str,
    user: CurrentUser,
    repo: Annotated[Repository, Depends(get_repo)],
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=DEFAULT_READING_LIMIT)] = DEFAULT_READING_LIMIT,
):
    readings = repo.list_readings(sensor_id, start=start_date, end=end_date, limit=limit)
    return _envelope(
        [r.model_dump(mode="json") for r in readings], count=len(readings)
    )


@router.get("/alerts")
def get_alerts(
    user: CurrentUser,
    repo: Annotated[Repository, Depends(get_repo)],
    project_id: str | None = None,
    status: AlertStatus | None = None,
    severity: AlertSeverity | None = None,
):
    alerts = repo.list_alerts(
        project_id=project_id,
        status=status,
        severity=severity,
        limit=DEFAULT_ALERT_LIMIT,
    )
    return _envelope([a.model_dump(mode="json") for a in alerts], count=len(alerts))


@router.get("/alerts/{alert_id}")
def get_alert(
    alert_id: str,
    user: CurrentUser,
    repo: Annotated[Repository, Depends(get_repo)],
):
    alert = repo.get_alert(alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id)
    return _envelope(alert.model_dump(mode="json"))


@router.put("/alerts/{alert_id}/acknowledge")
def acknowledge_alert(
    alert_id: str,
    user: CurrentUser,
    lifecycle: Annotated[AlertLifecycleManager, Depends(get_lifecycle)],
):
    alert = lifecycle.acknowledge(alert_id, user)
    return _envelope(alert.model_dump(mode="json"), message="Alert acknowledged")


@router.put("/alerts/{alert_id}/resolve")
def resolve_alert(
    alert_id: str,
    user: CurrentUser,
    lifecycle: Annotated[AlertLifecycleManager, Depends(get_lifecycle)],
):
    alert = lifecycle.resolve(alert_id, user)
    return _envelope(alert.model_dump(mode="json"), message="Alert resolved")


@router.put("/alerts/{alert_id}/dismiss")
def dismiss_alert(
    alert_id: str,
    user: CurrentUser,
    lifecycle: Annotated[AlertLifecycleManager, Depends(get_lifecycle)],
):
    alert = lifecycle.dismiss(alert_id, user)
    return _envelope(alert.model_dump(mode="json"), message="Alert dismissed")


@router.post("/alerts/{alert_id}/notes")
def add_alert_note(
    alert_id: str,
    payload: NoteRequest,
    user: CurrentUser,
    lifecycle: Annotated[AlertLifecycleManager, Depends(get_lifecycle)],
):
    alert = lifecycle.add_note(alert_id, user, payload.note)
    return _envelope(alert.model_dump(mode="json"), message="Note added to alert")


# ---------------------------------------------------------------------------
# Error Handlers
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message},
    )


async def _alerting_error_handler(request: Request, exc: AlertingError) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        return _error(404, str(exc))
    if isinstance(exc, ValidationError):
        return _error(400, str(exc))
    if isinstance(exc, UnavailableError):
        return _error(503, "Storage temporarily unavailable, retry the request")

    logger.error(
        "Unhandled alerting error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return _error(500, "Internal server error")


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": "Invalid request",
            "errors": _jsonable_errors(exc),
        },
    )


def _jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unexpected error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Application Factory
# ---------------------------------------------------------------------------


def _build_services(app: FastAPI) -> None:
    """Construct the repository and services from ``Settings``."""
    from structwatch.alerting.publisher import create_alert_publisher
    from structwatch.alerting.repo import PostgresRepository

    settings = load_settings()
    repo = PostgresRepository(
        conninfo=settings.database_url.get_secret_value(),
        connect_timeout=settings.db_connect_timeout_seconds,
        statement_timeout_ms=settings.db_statement_timeout_ms,
    )

    publisher = None
    if settings.publishing_enabled:
        publisher = create_alert_publisher(
            settings.alert_queue_url, aws_region=settings.aws_region
        )

    _attach_services(app, repo, publisher)


def _attach_services(app: FastAPI, repo: Repository, publisher: Any = None) -> None:
    app.state.repo = repo
    app.state.pipeline = ReadingIngestPipeline(repo, publisher)
    app.state.lifecycle = AlertLifecycleManager(repo)


def create_app(
    repo: Repository | None = None,
    publisher: Any = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    ----------
    repo : Repository or None
        Storage to use. If None, a ``PostgresRepository`` is built from
        ``Settings`` during startup.
    publisher : AlertPublisher or None
        Only used together with an explicit ``repo``.
    cors_origins : list[str] or None
        Allowed CORS origins. Defaults to ``Settings.cors_origins`` when the
        repository is built from settings, otherwise none.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if repo is None:
            _build_services(app)
        logger.info("Alerting API started (repo=%s)", type(app.state.repo).__name__)
        yield
        logger.info("Alerting API shutting down")

    app = FastAPI(title="StructWatch Alerting", version="0.1.0", lifespan=lifespan)
    if repo is not None:
        _attach_services(app, repo, publisher)

    origins = cors_origins
    if origins is None and repo is None:
        origins = load_settings().cors_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(AlertingError, _alerting_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    app.include_router(router, prefix="/api/v1")
    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Start the API server using uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    port = int(os.environ.get("API_PORT", "8000"))
    logger.info("Starting alerting API on port %d", port)

    uvicorn.run(
        "structwatch.alerting.api:create_app",
        factory=True,
        host="0.0.0.0",
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
