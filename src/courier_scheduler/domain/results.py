"""Result values exchanged with the delivery gateway and admission control."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Union

from pydantic import BaseModel


@dataclass(frozen=True)
class DeliverySuccess:
    delivery_id: str | None = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class DeliveryFailure:
    """A failed delivery attempt. Recoverable: drives the retry policy."""

    reason: str

    @property
    def ok(self) -> bool:
        return False


DeliveryResult = Union[DeliverySuccess, DeliveryFailure]


@dataclass(frozen=True)
class AdmissionAllowed:
    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class AdmissionDenied:
    """Admission refused. ``retry_after`` is used verbatim as the next delay.

    ``None`` means the controller gave no hint; the scheduler then falls back
    to ``SchedulerConfig.admission_retry_delay``.
    """

    retry_after: timedelta | None = None

    @property
    def allowed(self) -> bool:
        return False


AdmissionDecision = Union[AdmissionAllowed, AdmissionDenied]


class ScheduleStats(BaseModel):
    """Summary counters for dashboards (UTC day boundaries)."""

    total_scheduled: int = 0
    pending: int = 0
    pending_today: int = 0
    sent_today: int = 0
    failed_today: int = 0
    recurring_schedules: int = 0
