"""
Error taxonomy for the alerting core.

Every error raised out of the ingest pipeline or the lifecycle manager is an
``AlertingError`` subclass. The ``retryable`` flag tells the callers (the SQS
worker and the HTTP layer) whether repeating the whole operation can succeed:

    - ``NotFoundError``      -- referenced sensor or alert does not exist.
    - ``ValidationError``    -- malformed input (non-numeric value, empty note).
    - ``InvalidTransitionError`` -- lifecycle transition out of a state that
      does not allow it. Treated as a validation failure.
    - ``UnavailableError``   -- storage timeout or transient failure.
    - ``InternalError``      -- anything unexpected.
"""

from __future__ import annotations


class AlertingError(Exception):
    """Base class for all alerting errors."""

    retryable: bool = False


class NotFoundError(AlertingError):
    """Raised when a referenced sensor or alert does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class ValidationError(AlertingError):
    """Raised for malformed caller input."""


class InvalidTransitionError(ValidationError):
    """Raised when an alert cannot move from its current status."""

    def __init__(self, alert_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Alert {alert_id} cannot transition from '{current}' to '{target}'"
        )
        self.alert_id = alert_id
        self.current = current
        self.target = target


class UnavailableError(AlertingError):
    """Raised when storage times out or is transiently unreachable.

    Safe to retry the whole operation.
    """

    retryable = True


class InternalError(AlertingError):
    """Raised for unexpected failures."""
