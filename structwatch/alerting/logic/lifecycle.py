"""
Alert lifecycle management.

Owns the alert state machine and the append-only notes log::

    active ──> acknowledged ──> resolved
      │  └───────────────────────^ ^
      └──────┴──> dismissed ───────┘

``resolved`` and ``dismissed`` are terminal for every action except
``resolve``, and nothing returns an alert to ``active``. ``resolve`` is
accepted from any status; it does not require a prior ``acknowledge``.
Re-acknowledging and re-resolving are allowed and re-stamp the audit
fields with the latest caller and time.

Every mutation is delegated to a single atomic repository call; this module
never reads an alert, changes it in Python and writes it back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from structwatch.alerting.errors import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from structwatch.alerting.models import Alert, AlertNote, AlertStatus
from structwatch.alerting.repo import Repository

logger = logging.getLogger(__name__)

# Target status -> statuses it may be entered from.
ALLOWED_TRANSITIONS: dict[AlertStatus, tuple[AlertStatus, ...]] = {
    AlertStatus.ACKNOWLEDGED: (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED),
    AlertStatus.RESOLVED: (
        AlertStatus.ACTIVE,
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
        AlertStatus.DISMISSED,
    ),
    AlertStatus.DISMISSED: (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED),
}

TERMINAL_STATUSES: frozenset[AlertStatus] = frozenset(
    {AlertStatus.RESOLVED, AlertStatus.DISMISSED}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertLifecycleManager:
    """Applies user-driven lifecycle actions to alerts.

    Parameters
    ----------
    repo : Repository
        Storage for alerts.
    clock : callable or None
        Returns the current time; defaults to ``datetime.now(timezone.utc)``.
    """

    def __init__(
        self,
        repo: Repository,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock or _utcnow

    def acknowledge(self, alert_id: str, by_user: str) -> Alert:
        return self._transition(alert_id, AlertStatus.ACKNOWLEDGED, by_user)

    def resolve(self, alert_id: str, by_user: str) -> Alert:
        return self._transition(alert_id, AlertStatus.RESOLVED, by_user)

    def dismiss(self, alert_id: str, by_user: str) -> Alert:
        return self._transition(alert_id, AlertStatus.DISMISSED, by_user)

    def add_note(self, alert_id: str, by_user: str, text: str) -> Alert:
        """Append a note to the alert's log without touching its status.

        Raises
        ------
        ValidationError
            If ``text`` is empty or whitespace only.
        NotFoundError
            If the alert does not exist.
        """
        if not text or not text.strip():
            raise ValidationError("Note text must not be empty")

        note = AlertNote(user=by_user, note=text, timestamp=self._clock())
        alert = self._repo.append_alert_note(alert_id, note)
        if alert is None:
            raise NotFoundError("Alert", alert_id)

        logger.info(
            "Note added to alert %s by user=%s (%d notes)",
            alert_id,
            by_user,
            len(alert.notes),
        )
        return alert

    def _transition(
        self, alert_id: str, target: AlertStatus, by_user: str
    ) -> Alert:
        """Run one conditional status update.

        When the update matches nothing, a follow-up read tells a missing
        alert (``NotFoundError``) apart from one whose current status does
        not permit ``target`` (``InvalidTransitionError``).
        """
        allowed_from = ALLOWED_TRANSITIONS[target]
        alert = self._repo.transition_alert(
            alert_id,
            target=target,
            allowed_from=allowed_from,
            by_user=by_user,
            at=self._clock(),
        )
        if alert is not None:
            logger.info(
                "Alert %s %s by user=%s", alert_id, target.value, by_user
            )
            return alert

        current = self._repo.get_alert(alert_id)
        if current is None:
            raise NotFoundError("Alert", alert_id)

        logger.warning(
            "Rejected transition of alert %s from %s to %s by user=%s",
            alert_id,
            current.status.value,
            target.value,
            by_user,
        )
        raise InvalidTransitionError(alert_id, current.status.value, target.value)
