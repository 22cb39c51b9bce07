"""ScheduledTask — a one-shot delivery and its lifecycle."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from courier_scheduler.exceptions import TaskStateError


class _Unset:
    """Marker for "argument not given" where ``None`` is a legal value."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle states for a scheduled task."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING


class ScheduledTask(BaseModel):
    """A single future delivery.

    Status transitions::

        pending → pending    (schedule_retry, defer, reschedule)
        pending → sent       (mark_sent)
        pending → failed     (mark_failed)
        pending → cancelled  (cancel)

    ``sent``, ``failed`` and ``cancelled`` are terminal.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    destination: str
    payload: Any = None
    scheduled_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_error: str | None = None
    delivery_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("scheduled_at", "created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    # -- helpers ----------------------------------------------------------

    @property
    def is_pending(self) -> bool:
        return self.status is TaskStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def retries_remaining(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    def is_due(self, now: datetime) -> bool:
        return self.is_pending and self.scheduled_at <= now

    def _require_pending(self, action: str) -> None:
        if self.status is not TaskStatus.PENDING:
            raise TaskStateError(f"Cannot {action} task in {self.status.value} state")

    def _touch(self, now: datetime | None) -> None:
        self.updated_at = ensure_utc(now) if now else utcnow()

    # -- transitions ------------------------------------------------------

    def mark_sent(self, delivery_id: str | None, now: datetime | None = None) -> None:
        """pending → sent."""
        self._require_pending("mark sent")
        self.status = TaskStatus.SENT
        self.delivery_id = delivery_id
        self.last_error = None
        self._touch(now)

    def schedule_retry(
        self, delay: timedelta, reason: str, now: datetime
    ) -> None:
        """Record a failed attempt and push ``scheduled_at`` out by ``delay``."""
        self._require_pending("retry")
        if self.retry_count >= self.max_retries:
            raise TaskStateError(f"Max retries ({self.max_retries}) exceeded")
        self.retry_count += 1
        self.scheduled_at = ensure_utc(now) + delay
        self.last_error = reason
        self._touch(now)

    def mark_failed(self, reason: str, now: datetime | None = None) -> None:
        """pending → failed."""
        self._require_pending("fail")
        self.status = TaskStatus.FAILED
        self.last_error = reason
        self._touch(now)

    def defer(self, delay: timedelta, now: datetime) -> None:
        """Push the due instant out without consuming a retry."""
        self._require_pending("defer")
        self.scheduled_at = ensure_utc(now) + delay
        self._touch(now)

    def reschedule(
        self,
        *,
        scheduled_at: datetime | None = None,
        destination: str | None = None,
        payload: Any = UNSET,
        max_retries: int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Apply caller updates while pending.

        Returns True when ``scheduled_at`` changed (the timer must be rearmed).
        """
        self._require_pending("reschedule")
        moved = False
        if scheduled_at is not None:
            scheduled_at = ensure_utc(scheduled_at)
            moved = scheduled_at != self.scheduled_at
            self.scheduled_at = scheduled_at
        if destination is not None:
            self.destination = destination
        if payload is not UNSET:
            self.payload = payload
        if max_retries is not None:
            if max_retries < 0:
                raise TaskStateError("max_retries must be >= 0")
            self.max_retries = max_retries
        self._touch(now)
        return moved

    def cancel(self, now: datetime | None = None) -> None:
        """pending → cancelled."""
        self._require_pending("cancel")
        self.status = TaskStatus.CANCELLED
        self._touch(now)
