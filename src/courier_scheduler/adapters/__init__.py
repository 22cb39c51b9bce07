"""Runtime adapters: clocks, timers and the task registry.

Backend adapters live in sub-packages: ``adapters.memory`` (tests and
single-process use) and ``adapters.redis``.
"""

from .clock import SystemClock
from .task_registry import TimerRegistry
from .timers import AsyncioTimerService, TimerHandle

__all__ = [
    "AsyncioTimerService",
    "SystemClock",
    "TimerHandle",
    "TimerRegistry",
]
