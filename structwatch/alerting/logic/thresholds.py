"""
Threshold evaluation for incoming sensor readings.

Implements ``evaluate`` which turns one reading into zero or one
``AlertDraft`` according to the sensor's warning/critical thresholds.

Rules:
    - Tiers are checked in priority order: critical first, then warning.
      The first tier that is breached wins, so a reading that breaches both
      tiers yields a single critical draft.
    - A tier is breached when ``max`` is set and ``value > max``, or ``min``
      is set and ``value < min``. Comparisons are strict: a value equal to a
      bound is inside the band.
    - A bound is "set" when it is not ``None``. Zero is a valid bound.
    - A tier with neither bound never triggers.

The module has no side effects and performs no I/O.
"""

from __future__ import annotations

from typing import Protocol

from structwatch.alerting.models import (
    AlertDraft,
    AlertSeverity,
    AlertType,
    ThresholdRange,
    Thresholds,
)

# (tier attribute, alert type, severity), in priority order.
_TIERS: tuple[tuple[str, AlertType, AlertSeverity], ...] = (
    ("critical", AlertType.THRESHOLD_CRITICAL, AlertSeverity.CRITICAL),
    ("warning", AlertType.THRESHOLD_WARNING, AlertSeverity.HIGH),
)


class ReadingLike(Protocol):
    """Anything carrying a numeric ``value`` and its ``unit``."""

    value: float
    unit: str


def is_breached(value: float, band: ThresholdRange | None) -> bool:
    """Return True if ``value`` lies strictly outside ``band``.

    Parameters
    ----------
    value : float
        The reading value.
    band : ThresholdRange or None
        The tier to check. ``None`` never breaches.
    """
    if band is None:
        return False
    if band.max is not None and value > band.max:
        return True
    if band.min is not None and value < band.min:
        return True
    return False


def format_value(value: float) -> str:
    """Render a reading value for alert text.

    Integral floats render without the trailing ``.0`` (``150.0`` -> ``150``).
    """
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def build_title(sensor_name: str, severity: AlertSeverity) -> str:
    return f"{sensor_name} {severity.value} threshold exceeded"


def build_message(value: float, unit: str, severity: AlertSeverity) -> str:
    return (
        f"Sensor reading of {format_value(value)}{unit} exceeds "
        f"{severity.value} threshold"
    )


def evaluate(
    thresholds: Thresholds | None,
    reading: ReadingLike,
    sensor_name: str = "",
) -> AlertDraft | None:
    """Decide whether ``reading`` breaches a threshold tier.

    Parameters
    ----------
    thresholds : Thresholds or None
        The sensor's threshold configuration. ``None`` means no thresholds
        are configured and no alert is ever produced.
    reading : ReadingLike
        The new reading (only ``value`` and ``unit`` are used).
    sensor_name : str
        Used in the alert title.

    Returns
    -------
    AlertDraft or None
        A draft for the highest-priority breached tier, or None.
    """
    if thresholds is None:
        return None

    for attr, alert_type, severity in _TIERS:
        band: ThresholdRange | None = getattr(thresholds, attr)
        if not is_breached(reading.value, band):
            continue

        return AlertDraft(
            alert_type=alert_type,
            severity=severity,
            title=build_title(sensor_name, severity),
            message=build_message(reading.value, reading.unit, severity),
            value=reading.value,
            threshold=band,
        )

    return None
