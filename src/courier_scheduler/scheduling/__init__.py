"""Scheduling core — deferred deliveries executed at a future instant.

* :class:`DeliveryScheduler` owns the task lifecycle. It persists every
  accepted delivery, arms a timer for its due instant and drives the
  attempt cycle (admission, delivery, retry) when the timer fires.

* :class:`ReconciliationWorker` is the safety net. It periodically re-scans
  persisted work and re-arms or fires anything whose timer was lost.

Both are driven by the injected clock, so a ``ManualClock`` makes the whole
core deterministic under test.
"""

from .service import DeliveryScheduler, LifecycleState, ScheduleRequest
from .worker import ReconciliationWorker

__all__ = [
    "DeliveryScheduler",
    "LifecycleState",
    "ReconciliationWorker",
    "ScheduleRequest",
]
