"""
Alert publisher: hands newly persisted alerts to downstream consumers.

Publishes an ``AlertEvent`` to an SQS queue after the alert row has been
written. Publishing always happens after the write so consumers never see
an alert that does not exist in storage. When the queue is FIFO, events are
grouped by project so consumers see a project's alerts in creation order.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3

from structwatch.alerting.models import Alert, AlertEvent

logger = logging.getLogger(__name__)


def _is_fifo_queue(queue_url: str) -> bool:
    """Check if a queue URL indicates a FIFO queue."""
    return queue_url.endswith(".fifo")


class AlertPublisher:
    """Publishes ``AlertEvent`` messages to SQS.

    Parameters
    ----------
    sqs_client : boto3 SQS client
        Pre-configured boto3 SQS client.
    queue_url : str
        URL of the alert queue.
    """

    def __init__(self, sqs_client: Any, queue_url: str) -> None:
        self._sqs_client = sqs_client
        self._queue_url = queue_url
        self._is_fifo = _is_fifo_queue(queue_url)

    def publish(self, alert: Alert, trace_id: str = "") -> None:
        """Send one ``AlertEvent`` for ``alert``.

        Raises
        ------
        Exception
            Any SQS client error is propagated; the caller decides whether
            a publish failure is fatal.
        """
        event = AlertEvent(alert=alert, trace_id=trace_id)
        send_kwargs: dict[str, Any] = {
            "QueueUrl": self._queue_url,
            "MessageBody": event.model_dump_json(),
        }
        if self._is_fifo:
            send_kwargs["MessageGroupId"] = alert.project_id
            send_kwargs["MessageDeduplicationId"] = alert.id

        self._sqs_client.send_message(**send_kwargs)
        logger.info(
            "Published alert %s (%s) for project=%s sensor=%s",
            alert.id,
            alert.severity.value,
            alert.project_id,
            alert.sensor_id,
        )


def create_alert_publisher(
    queue_url: str,
    aws_region: str = "us-east-1",
    endpoint_url: str | None = None,
    aws_access_key_id: str | None = None,
    aws_secret_access_key: str | None = None,
) -> AlertPublisher | None:
    """Create an AlertPublisher, or None when ``queue_url`` is empty.

    For local development with LocalStack, pass the endpoint_url and
    credentials. In AWS, leave them as None to use the default credential
    chain.
    """
    if not queue_url:
        return None

    sqs_client = boto3.client(
        "sqs",
        region_name=aws_region,
        endpoint_url=endpoint_url,
        aws_access_key_id=aws_access_key_id,
        aws_secret_access_key=aws_secret_access_key,
    )
    return AlertPublisher(sqs_client, queue_url)
