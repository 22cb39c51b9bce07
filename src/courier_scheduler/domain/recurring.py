"""RecurringSchedule — a delivery repeated according to a cron-like pattern."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from courier_scheduler.exceptions import TaskStateError

from .task import ensure_utc, utcnow

RunStatus = Literal["ok", "error"]


class RecurringSchedule(BaseModel):
    """A recurring delivery.

    Created once and never deleted: cancellation sets ``is_active`` to False,
    after which the schedule can not be reactivated.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pattern: str
    destination: str
    payload: Any = None
    next_run: datetime
    is_active: bool = True
    timezone: str = "UTC"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_run_at: datetime | None = None
    last_status: RunStatus | None = None
    last_error: str | None = None
    run_count: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("next_run", "created_at", "updated_at", "last_run_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_run <= now

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise TaskStateError(f"Cannot {action} inactive schedule {self.id}")

    def record_run(
        self,
        status: RunStatus,
        next_run: datetime,
        now: datetime,
        error: str | None = None,
    ) -> None:
        """Record an occurrence outcome and advance ``next_run``."""
        self._require_active("record a run on")
        now = ensure_utc(now)
        self.last_run_at = now
        self.last_status = status
        self.last_error = error
        self.run_count += 1
        self.next_run = ensure_utc(next_run)
        self.updated_at = now

    def defer(self, delay: timedelta, now: datetime) -> None:
        """Push the pending occurrence out, e.g. after an admission denial."""
        self._require_active("defer")
        now = ensure_utc(now)
        self.next_run = now + delay
        self.updated_at = now

    def deactivate(self, now: datetime | None = None) -> None:
        self._require_active("deactivate")
        self.is_active = False
        self.updated_at = ensure_utc(now) if now else utcnow()
