"""
Lambda handler for the reading ingest worker.

Implements the ``handler(event, context)`` entrypoint for the SQS-triggered
Lambda function. Each SQS record carries one ``IngestMessage``; records are
ingested in order through ``ReadingIngestPipeline`` and the handler returns
a partial batch failure response so only retryable failures are redelivered.

Error routing:
    - ``NotFoundError`` / ``ValidationError``: ACK. Retrying cannot fix an
      unknown sensor or a malformed reading.
    - ``UnavailableError``: NACK. Storage was unreachable or timed out; the
      whole ingest is safe to retry.
    - ``TimeBudgetExceededError``: the current and all remaining records are
      NACKed so the Lambda returns before it is hard-killed.
    - Anything else: NACK and log with full context.
    - Unparseable bodies: ACK (poison pills must not block the queue).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from structwatch.alerting.config import load_settings
from structwatch.alerting.errors import (
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from structwatch.alerting.logic.ingest import ReadingIngestPipeline
from structwatch.alerting.models import IngestMessage

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metric Constants
# ---------------------------------------------------------------------------

METRIC_INGEST_LAG = "IngestLag"


# ---------------------------------------------------------------------------
# SQS Batch Response Models
# ---------------------------------------------------------------------------


class SQSBatchResponse:
    """Partial batch failure response for SQS Lambda integration."""

    __slots__ = ("failed_ids",)

    def __init__(self) -> None:
        self.failed_ids: list[str] = []

    def add_failure(self, message_id: str) -> None:
        if message_id not in self.failed_ids:
            self.failed_ids.append(message_id)

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            "batchItemFailures": [
                {"itemIdentifier": message_id} for message_id in self.failed_ids
            ]
        }


# ---------------------------------------------------------------------------
# Timeout Guard
# ---------------------------------------------------------------------------

# Threshold in milliseconds below which we consider timeout imminent.
_TIMEOUT_THRESHOLD_MS = 3000


class TimeBudgetExceededError(Exception):
    """Raised when the Lambda invocation is about to run out of time."""


class TimeoutGuard:
    """Stops batch processing before AWS Lambda kills the invocation.

    Parameters
    ----------
    context : Any
        AWS Lambda context object. Must expose ``get_remaining_time_in_millis()``.
    """

    def __init__(self, context: Any) -> None:
        self._context = context

    def check_remaining(self) -> None:
        """Raise TimeBudgetExceededError if < 3 seconds remain."""
        remaining = self._context.get_remaining_time_in_millis()
        if remaining < _TIMEOUT_THRESHOLD_MS:
            raise TimeBudgetExceededError(
                f"Lambda timeout imminent: {remaining}ms remaining "
                f"(threshold: {_TIMEOUT_THRESHOLD_MS}ms)"
            )


# ---------------------------------------------------------------------------
# Metric Emitter
# ---------------------------------------------------------------------------


def _default_metric_emitter(
    name: str, value: float, unit: str, dimensions: dict[str, str]
) -> None:
    """Log metrics when no CloudWatch emitter is configured."""
    logger.info(
        "Metric: %s=%.3f %s dimensions=%s",
        name,
        value,
        unit,
        dimensions,
    )


# ---------------------------------------------------------------------------
# Message Parsing
# ---------------------------------------------------------------------------


def _parse_sqs_records(
    event: dict[str, Any],
) -> list[tuple[str, IngestMessage]]:
    """Parse SQS event records into (message_id, IngestMessage) pairs.

    Records whose body is not valid JSON or does not match the
    ``IngestMessage`` schema are logged and dropped, which ACKs them.
    """
    records = event.get("Records", [])
    if not records:
        logger.warning("SQS event contains no Records")
        return []

    parsed: list[tuple[str, IngestMessage]] = []
    for record in records:
        message_id = record["messageId"]
        body_str = record["body"]
        try:
            body = json.loads(body_str)
            parsed.append((message_id, IngestMessage.model_validate(body)))
        except (json.JSONDecodeError, PydanticValidationError):
            logger.exception(
                "Failed to parse SQS record messageId=%s body=%s",
                message_id,
                body_str[:500],
            )
            continue

    return parsed


# ---------------------------------------------------------------------------
# IngestWorker
# ---------------------------------------------------------------------------


class IngestWorker:
    """SQS batch processor in front of the ingest pipeline.

    Parameters
    ----------
    pipeline : ReadingIngestPipeline
        Ingest orchestration.
    metric_emitter : callable or None
        Callback for emitting CloudWatch metrics. If None, metrics are
        logged.
    """

    def __init__(
        self,
        pipeline: ReadingIngestPipeline,
        metric_emitter: Any | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._metric_emitter = metric_emitter or _default_metric_emitter

    def handler(self, event: dict[str, Any], context: Any) -> dict[str, Any]:
        """Process one SQS batch and return the partial failure response."""
        response = SQSBatchResponse()
        timeout_guard = TimeoutGuard(context)

        messages = _parse_sqs_records(event)

        for index, (message_id, msg) in enumerate(messages):
            try:
                timeout_guard.check_remaining()
                self.process_message(msg)

            except TimeBudgetExceededError:
                remaining = [mid for mid, _ in messages[index:]]
                logger.warning(
                    "Timeout imminent at messageId=%s. "
                    "Marking %d remaining messages as failed.",
                    message_id,
                    len(remaining),
                )
                for mid in remaining:
                    response.add_failure(mid)
                break

            except NotFoundError as exc:
                logger.warning(
                    "Dropping reading for unknown %s messageId=%s: %s",
                    exc.kind.lower(),
                    message_id,
                    exc,
                )

            except ValidationError as exc:
                logger.warning(
                    "Dropping invalid reading messageId=%s sensor=%s: %s",
                    message_id,
                    msg.sensor_id,
                    exc,
                )

            except UnavailableError as exc:
                logger.warning(
                    "Storage unavailable for messageId=%s sensor=%s: %s. "
                    "Message will be retried.",
                    message_id,
                    msg.sensor_id,
                    exc,
                )
                response.add_failure(message_id)

            except Exception:
                logger.exception(
                    "Error ingesting messageId=%s sensor=%s trace_id=%s. "
                    "Message will be retried.",
                    message_id,
                    msg.sensor_id,
                    msg.trace_id,
                )
                response.add_failure(message_id)

        return response.to_dict()

    def process_message(self, msg: IngestMessage) -> None:
        """Ingest a single reading and emit the ingest lag metric."""
        reading = self._pipeline.ingest(
            msg.sensor_id,
            msg.to_reading_input(),
            trace_id=msg.trace_id,
        )
        self._emit_ingest_lag(reading.timestamp, msg.sensor_id)

    def _emit_ingest_lag(self, reading_ts: datetime, sensor_id: str) -> None:
        """Emit ``IngestLag`` (now - reading timestamp) in seconds."""
        if reading_ts.tzinfo is None:
            reading_ts = reading_ts.replace(tzinfo=timezone.utc)
        lag_seconds = (datetime.now(timezone.utc) - reading_ts).total_seconds()

        try:
            self._metric_emitter(
                METRIC_INGEST_LAG,
                lag_seconds,
                "Seconds",
                {"SensorId": sensor_id},
            )
        except Exception:
            logger.warning(
                "Failed to emit IngestLag metric for sensor=%s",
                sensor_id,
                exc_info=True,
            )


# ---------------------------------------------------------------------------
# Module-level handler (Lambda entrypoint)
# ---------------------------------------------------------------------------

# Built on first cold start and reused across warm invocations.
_worker: IngestWorker | None = None


def _create_worker() -> IngestWorker:
    """Build the IngestWorker from ``Settings``."""
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

    return IngestWorker(pipeline=ReadingIngestPipeline(repo, publisher))


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda handler entrypoint. Delegates to the ``IngestWorker`` singleton."""
    global _worker
    if _worker is None:
        _worker = _create_worker()

    return _worker.handler(event, context)
