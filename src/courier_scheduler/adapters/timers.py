"""AsyncioTimerService — "call me back at instant T" over a single wake loop."""

from __future__ import annotations

import asyncio
import contextlib
import heapq
import itertools
import logging
from typing import TYPE_CHECKING

from ..ports.background_worker import IBackgroundWorker

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from ..ports.clock import IClock

logger = logging.getLogger("courier_scheduler.timers")


class TimerHandle:
    """Cancellation token returned by :meth:`AsyncioTimerService.arm`."""

    __slots__ = ("due", "callback", "label", "_cancelled", "_fired")

    def __init__(
        self, due: datetime, callback: Callable[[], None], label: str | None = None
    ) -> None:
        self.due = due
        self.callback = callback
        self.label = label
        self._cancelled = False
        self._fired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> bool:
        """Disarm. Returns False if the timer already fired or was cancelled."""
        if not self.active:
            return False
        self._cancelled = True
        return True

    def __repr__(self) -> str:
        state = "fired" if self._fired else "cancelled" if self._cancelled else "armed"
        return f"<TimerHandle {self.label or '?'} due={self.due.isoformat()} {state}>"


class AsyncioTimerService(IBackgroundWorker):
    """Min-heap of pending firings plus one background wake loop.

    Callbacks are plain synchronous callables run on the event loop; they must
    not block (spawn a task for real work). Cancelled handles are dropped
    lazily when they reach the top of the heap.

    Time comes from the injected :class:`IClock`, so a ``ManualClock`` makes
    firing fully deterministic; :meth:`run_due` fires everything already due
    without waiting for the loop (useful in tests).
    """

    def __init__(self, clock: IClock) -> None:
        self._clock = clock
        self._heap: list[tuple[datetime, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, h in self._heap if h.active)

    def arm(
        self,
        at: datetime,
        callback: Callable[[], None],
        *,
        label: str | None = None,
    ) -> TimerHandle:
        """Schedule ``callback`` for instant ``at`` (fires immediately if past)."""
        handle = TimerHandle(at, callback, label)
        heapq.heappush(self._heap, (at, next(self._seq), handle))
        self._wakeup.set()
        return handle

    def next_deadline(self) -> datetime | None:
        while self._heap and not self._heap[0][2].active:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def run_due(self) -> int:
        """Fire every armed timer whose instant has passed. Returns the count."""
        now = self._clock.now()
        fired = 0
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if not handle.active:
                continue
            handle._fired = True
            fired += 1
            try:
                handle.callback()
            except Exception:
                logger.exception("Timer callback failed (%s)", handle.label)
        return fired

    def cancel_all(self) -> int:
        cancelled = 0
        for _, _, handle in self._heap:
            if handle.cancel():
                cancelled += 1
        self._heap.clear()
        return cancelled

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("AsyncioTimerService started")

    async def stop(self) -> None:
        self._running = False
        self._wakeup.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._task, timeout=5.0)
            self._task = None
        dropped = self.cancel_all()
        logger.info("AsyncioTimerService stopped (%d timers disarmed)", dropped)

    async def _run_loop(self) -> None:
        while self._running:
            self._wakeup.clear()
            try:
                self.run_due()
            except Exception:
                logger.exception("AsyncioTimerService error")
            await self._clock.sleep_until(self.next_deadline(), self._wakeup)
