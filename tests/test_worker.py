"""Tests for ReconciliationWorker."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from courier_scheduler.adapters.memory import ManualClock
from courier_scheduler.exceptions import PersistenceError
from courier_scheduler.scheduling import ReconciliationWorker


def make_scheduler(**kwargs) -> MagicMock:
    scheduler = MagicMock()
    scheduler.reconcile = AsyncMock(**kwargs)
    return scheduler


@pytest.mark.asyncio
async def test_run_once() -> None:
    scheduler = make_scheduler(return_value=2)
    worker = ReconciliationWorker(scheduler, ManualClock())

    assert await worker.run_once() == 2
    assert worker.sweep_count == 1
    scheduler.reconcile.assert_awaited_once()


@pytest.mark.asyncio
async def test_polls_on_clock_interval() -> None:
    swept = asyncio.Event()
    scheduler = make_scheduler(side_effect=lambda: swept.set() or 0)
    clock = ManualClock()
    worker = ReconciliationWorker(scheduler, clock, poll_interval=60.0)

    await worker.start()
    try:
        await asyncio.sleep(0)
        assert not swept.is_set()
        clock.advance(timedelta(seconds=60))
        await asyncio.wait_for(swept.wait(), timeout=1.0)
    finally:
        await worker.stop()
    assert worker.sweep_count >= 1


@pytest.mark.asyncio
async def test_trigger_wakes_immediately() -> None:
    swept = asyncio.Event()
    scheduler = make_scheduler(side_effect=lambda: swept.set() or 0)
    worker = ReconciliationWorker(scheduler, ManualClock(), poll_interval=3600.0)

    await worker.start()
    try:
        worker.trigger()
        await asyncio.wait_for(swept.wait(), timeout=1.0)
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_store_errors_do_not_kill_the_loop() -> None:
    calls = 0
    recovered = asyncio.Event()

    def reconcile() -> int:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise PersistenceError("down")
        recovered.set()
        return 0

    worker = ReconciliationWorker(
        make_scheduler(side_effect=reconcile), ManualClock(), poll_interval=3600.0
    )
    await worker.start()
    try:
        worker.trigger()
        await asyncio.sleep(0.01)
        worker.trigger()
        await asyncio.wait_for(recovered.wait(), timeout=1.0)
    finally:
        await worker.stop()
    assert calls == 2
