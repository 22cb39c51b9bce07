"""TimerRegistry — the scheduler's map of live timers and in-flight attempts."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .timers import TimerHandle

logger = logging.getLogger("courier_scheduler.timers")


class TimerRegistry:
    """Tracks, per scheduled entity, its armed timer and running attempt cycle.

    Owned by exactly one scheduler instance and lives as long as it does.
    Keys are namespaced by the caller (``task:<id>``, ``recurring:<id>``).

    Example::

        registry = TimerRegistry()
        registry.register_timer("task:42", timers.arm(due, callback))
        ...
        registry.disarm("task:42")   # e.g. on cancel
    """

    def __init__(self) -> None:
        self._timers: dict[str, TimerHandle] = {}
        self._attempts: dict[str, asyncio.Task[Any]] = {}

    # -- timers -----------------------------------------------------------

    def register_timer(self, key: str, handle: TimerHandle) -> None:
        """Register a timer, disarming any timer previously held for ``key``."""
        previous = self._timers.get(key)
        if previous is not None and previous is not handle:
            previous.cancel()
        self._timers[key] = handle

    def forget_timer(self, key: str, handle: TimerHandle) -> None:
        """Drop ``handle`` after it fired (only if it is still the current one)."""
        if self._timers.get(key) is handle:
            del self._timers[key]

    def disarm(self, key: str) -> bool:
        """Cancel and remove the timer for ``key``. Returns True if one was live."""
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        cancelled = handle.cancel()
        if cancelled:
            logger.debug("TimerRegistry: disarmed %s", key)
        return cancelled

    def has_live_timer(self, key: str) -> bool:
        handle = self._timers.get(key)
        return handle is not None and handle.active

    def disarm_all(self) -> int:
        count = sum(1 for handle in self._timers.values() if handle.cancel())
        self._timers.clear()
        return count

    @property
    def live_timer_count(self) -> int:
        return sum(1 for handle in self._timers.values() if handle.active)

    # -- attempts ---------------------------------------------------------

    def register_attempt(self, key: str, task: asyncio.Task[Any]) -> None:
        """Register the asyncio task running an attempt cycle for ``key``."""
        if not isinstance(task, asyncio.Task):
            raise TypeError(
                f"TimerRegistry expects asyncio.Task, got {type(task).__name__}"
            )
        self._attempts[key] = task

    def unregister_attempt(self, key: str, task: asyncio.Task[Any] | None) -> None:
        if task is None or self._attempts.get(key) is task:
            self._attempts.pop(key, None)

    def is_in_flight(self, key: str) -> bool:
        task = self._attempts.get(key)
        return task is not None and not task.done()

    def in_flight_attempts(self) -> list[asyncio.Task[Any]]:
        return [task for task in self._attempts.values() if not task.done()]
