"""Domain types: tasks, recurring schedules and collaborator result values."""

from .recurring import RecurringSchedule, RunStatus
from .results import (
    AdmissionAllowed,
    AdmissionDecision,
    AdmissionDenied,
    DeliveryFailure,
    DeliveryResult,
    DeliverySuccess,
    ScheduleStats,
)
from .task import UNSET, ScheduledTask, TaskStatus, ensure_utc, utcnow

__all__ = [
    "AdmissionAllowed",
    "AdmissionDecision",
    "AdmissionDenied",
    "DeliveryFailure",
    "DeliveryResult",
    "DeliverySuccess",
    "RecurringSchedule",
    "RunStatus",
    "ScheduleStats",
    "ScheduledTask",
    "TaskStatus",
    "UNSET",
    "ensure_utc",
    "utcnow",
]
