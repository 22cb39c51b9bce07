"""ReconciliationWorker — periodic safety-net sweep for the scheduler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from courier_scheduler.exceptions import PersistenceError
from courier_scheduler.ports.background_worker import IBackgroundWorker

if TYPE_CHECKING:
    from courier_scheduler.ports.clock import IClock

    from .service import DeliveryScheduler

logger = logging.getLogger("courier_scheduler.scheduling")


class ReconciliationWorker(IBackgroundWorker):
    """Reactive worker that re-scans persisted work for lost or drifted timers.

    Uses trigger + polling fallback. Call :meth:`trigger` to wake immediately;
    otherwise runs every ``poll_interval`` seconds of *clock* time, so a
    ``ManualClock`` drives it in tests.

    Implements ``IBackgroundWorker`` (``start`` / ``stop``).
    """

    def __init__(
        self,
        scheduler: DeliveryScheduler,
        clock: IClock,
        poll_interval: float = 60.0,
    ) -> None:
        self._scheduler = scheduler
        self._clock = clock
        self._poll_interval = poll_interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()
        self._sweep_count = 0

    @property
    def sweep_count(self) -> int:
        return self._sweep_count

    def trigger(self) -> None:
        """Wake the worker immediately."""
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "ReconciliationWorker started (poll_interval=%.1fs)",
            self._poll_interval,
        )

    async def stop(self) -> None:
        self._running = False
        self._trigger.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._task, timeout=5.0)
            self._task = None
        logger.info("ReconciliationWorker stopped")

    async def run_once(self) -> int:
        """Execute a single sweep (useful in tests)."""
        return await self._sweep()

    async def _run_loop(self) -> None:
        while self._running:
            deadline = self._clock.now() + timedelta(seconds=self._poll_interval)
            await self._clock.sleep_until(deadline, self._trigger)
            self._trigger.clear()
            if not self._running:
                break
            try:
                await self._sweep()
            except PersistenceError as e:
                logger.warning("ReconciliationWorker: store unavailable: %s", e)
            except Exception:
                logger.exception("ReconciliationWorker error")

    async def _sweep(self) -> int:
        self._sweep_count += 1
        count = await self._scheduler.reconcile()
        if count > 0:
            logger.info("ReconciliationWorker: recovered %d due items", count)
        return count
