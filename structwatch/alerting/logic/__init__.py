"""
Core alerting logic.

This package contains the threshold evaluator, the alert lifecycle state
machine and the reading ingest orchestration.

Public API:
    - ``evaluate`` -- Pure threshold evaluation of one reading.
    - ``AlertLifecycleManager`` -- acknowledge / resolve / dismiss / add_note.
    - ``ReadingIngestPipeline`` -- persist reading, refresh cache, alert.
"""

from structwatch.alerting.logic.ingest import ReadingIngestPipeline
from structwatch.alerting.logic.lifecycle import AlertLifecycleManager
from structwatch.alerting.logic.thresholds import evaluate, is_breached

__all__ = [
    "evaluate",
    "is_breached",
    "AlertLifecycleManager",
    "ReadingIngestPipeline",
]
