"""ManualClock — virtual time for deterministic tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from courier_scheduler.domain.task import ensure_utc
from courier_scheduler.ports.clock import IClock

DEFAULT_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ManualClock(IClock):
    """
    Clock that only moves when told to.

    Sleepers blocked in :meth:`sleep_until` are released as soon as
    :meth:`advance` or :meth:`set` moves time past their deadline.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_utc(start) if start else DEFAULT_EPOCH
        self._sleepers: list[tuple[datetime, asyncio.Future[None]]] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: float | timedelta) -> datetime:
        """Move time forward by ``delta`` (seconds or timedelta)."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        if delta < timedelta(0):
            raise ValueError("ManualClock cannot move backwards via advance()")
        self._now += delta
        self._release()
        return self._now

    def set(self, instant: datetime) -> None:
        """Jump to ``instant``; may move backwards to simulate clock adjustment."""
        self._now = ensure_utc(instant)
        self._release()

    async def sleep_until(
        self, deadline: datetime | None, wakeup: asyncio.Event
    ) -> None:
        if deadline is not None and deadline <= self._now:
            return
        if wakeup.is_set():
            return

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[None] = loop.create_future()
        if deadline is not None:
            self._sleepers.append((deadline, fut))
        waiter = asyncio.ensure_future(wakeup.wait())
        try:
            await asyncio.wait({fut, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not fut.done():
                fut.cancel()
            self._sleepers = [(d, f) for d, f in self._sleepers if f is not fut]

    def _release(self) -> None:
        for deadline, fut in self._sleepers:
            if deadline <= self._now and not fut.done():
                fut.set_result(None)

    # --- Test helpers ---

    @property
    def sleeper_count(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())
