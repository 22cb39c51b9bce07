"""Task Store adapter: durable scheduler records over a key/value store."""

from .task_store import (
    SCHEDULE_PREFIX,
    TASK_PREFIX,
    TaskStore,
    schedule_key,
    task_key,
)

__all__ = [
    "SCHEDULE_PREFIX",
    "TASK_PREFIX",
    "TaskStore",
    "schedule_key",
    "task_key",
]
