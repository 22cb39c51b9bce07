"""courier-scheduler: durable future-delivery scheduling with retries and recurrence."""

from __future__ import annotations

from courier_scheduler.exceptions import (
    CourierSchedulerError,
    DomainError,
    InfrastructureError,
    InvalidPatternError,
    InvalidScheduleError,
    PersistenceError,
    SchedulerStartupError,
    TaskStateError,
    ValidationError,
)

from .adapters import AsyncioTimerService, SystemClock, TimerHandle, TimerRegistry
from .adapters.memory import (
    AllowAllAdmissionControl,
    FixedWindowAdmissionControl,
    InMemoryKeyValueStore,
    ManualClock,
    RecordingDeliveryGateway,
)
from .config import SchedulerConfig
from .domain import (
    AdmissionAllowed,
    AdmissionDecision,
    AdmissionDenied,
    DeliveryFailure,
    DeliveryResult,
    DeliverySuccess,
    RecurringSchedule,
    ScheduledTask,
    ScheduleStats,
    TaskStatus,
)
from .patterns import CronPattern, PatternResolver, next_occurrence, parse_pattern
from .persistence import TaskStore
from .ports import (
    IAdmissionControl,
    IBackgroundWorker,
    IClock,
    IDeliveryGateway,
    IKeyValueStore,
)
from .retry import RetryDecision, SteppedBackoffPolicy
from .scheduling import (
    DeliveryScheduler,
    LifecycleState,
    ReconciliationWorker,
    ScheduleRequest,
)

__all__ = [
    # Scheduling
    "DeliveryScheduler",
    "LifecycleState",
    "ReconciliationWorker",
    "ScheduleRequest",
    "SchedulerConfig",
    # Domain
    "RecurringSchedule",
    "ScheduleStats",
    "ScheduledTask",
    "TaskStatus",
    "AdmissionAllowed",
    "AdmissionDecision",
    "AdmissionDenied",
    "DeliveryFailure",
    "DeliveryResult",
    "DeliverySuccess",
    # Policies
    "CronPattern",
    "PatternResolver",
    "RetryDecision",
    "SteppedBackoffPolicy",
    "next_occurrence",
    "parse_pattern",
    # Persistence
    "TaskStore",
    # Ports
    "IAdmissionControl",
    "IBackgroundWorker",
    "IClock",
    "IDeliveryGateway",
    "IKeyValueStore",
    # Adapters
    "AllowAllAdmissionControl",
    "AsyncioTimerService",
    "FixedWindowAdmissionControl",
    "InMemoryKeyValueStore",
    "ManualClock",
    "RecordingDeliveryGateway",
    "SystemClock",
    "TimerHandle",
    "TimerRegistry",
    # Exceptions
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
