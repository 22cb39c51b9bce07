"""Exception hierarchy for courier-scheduler.

Validation errors are raised synchronously to callers. Delivery failures and
admission denials are *not* exceptions: they are result values recorded on the
task (see :mod:`courier_scheduler.domain.results`).
"""

from __future__ import annotations


class CourierSchedulerError(Exception):
    """Root exception for the entire courier-scheduler package."""


class ValidationError(CourierSchedulerError):
    """Raised when a request is rejected before anything is persisted.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class InvalidScheduleError(ValidationError):
    """Raised when a due instant is in the past or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__({"scheduled_at": [message]})


class InvalidPatternError(ValidationError):
    """Raised when a recurrence pattern cannot be parsed."""

    def __init__(self, pattern: str, reason: str | None = None) -> None:
        self.pattern = pattern
        msg = f"Invalid recurrence pattern {pattern!r}"
        if reason:
            msg += f": {reason}"
        super().__init__({"pattern": [msg]})


class DomainError(CourierSchedulerError):
    """Base class for all domain-related errors."""


class TaskStateError(DomainError):
    """Raised when a task or schedule state transition is not allowed.

    E.g. cannot mark sent/failed/cancelled from a terminal state.
    """


class InfrastructureError(CourierSchedulerError):
    """Base class for all infrastructure-related errors."""


class PersistenceError(InfrastructureError):
    """Raised when the persistent store cannot be read or written."""


class SchedulerStartupError(InfrastructureError):
    """Raised when startup reconciliation fails.

    The scheduler stays not-ready: it cannot guarantee delivery without
    having re-armed the persisted work.
    """


__all__ = [
    "CourierSchedulerError",
    "DomainError",
    "InfrastructureError",
    "InvalidPatternError",
    "InvalidScheduleError",
    "PersistenceError",
    "SchedulerStartupError",
    "TaskStateError",
    "ValidationError",
]
