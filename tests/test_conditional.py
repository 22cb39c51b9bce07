"""Tests for condition-gated deliveries (schedule_when)."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from courier_scheduler.domain import TaskStatus
from courier_scheduler.exceptions import ValidationError


@pytest.mark.asyncio
class TestScheduleWhen:
    async def test_schedules_delivery_once_condition_holds(self, scheduler, clock, gateway):
        condition = AsyncMock(side_effect=[False, True])
        watch_id = await scheduler.schedule_when(
            "https://a", {"x": 1}, condition, check_interval=60
        )
        assert scheduler.watch_count == 1

        clock.advance(timedelta(seconds=60))
        await scheduler.run_due()
        assert condition.await_count == 1
        assert await scheduler.list() == []

        clock.advance(timedelta(seconds=60))
        await scheduler.run_due()
        assert condition.await_count == 2
        [task] = await scheduler.list()
        assert task.status is TaskStatus.PENDING
        assert task.scheduled_at == clock.now() + timedelta(seconds=1)
        assert scheduler.watch_count == 0

        clock.advance(timedelta(seconds=1))
        await scheduler.run_due()
        assert [m.payload for m in gateway.sent] == [{"x": 1}]
        assert (await scheduler.query(task.id)).status is TaskStatus.SENT

        clock.advance(timedelta(minutes=10))
        await scheduler.run_due()
        assert condition.await_count == 2
        assert await scheduler.cancel_when(watch_id) is False

    async def test_cancel_stops_checks(self, scheduler, clock):
        condition = AsyncMock(return_value=True)
        watch_id = await scheduler.schedule_when("d", None, condition)

        assert await scheduler.cancel_when(watch_id) is True
        assert await scheduler.cancel_when(watch_id) is False

        clock.advance(timedelta(minutes=5))
        await scheduler.run_due()
        condition.assert_not_awaited()
        assert await scheduler.list() == []
        assert scheduler.registry.live_timer_count == 0

    async def test_failing_condition_keeps_watching(self, scheduler, clock):
        condition = AsyncMock(side_effect=[RuntimeError("boom"), True])
        await scheduler.schedule_when("d", None, condition, check_interval=30)

        clock.advance(timedelta(seconds=30))
        await scheduler.run_due()
        assert await scheduler.list() == []
        assert scheduler.watch_count == 1

        clock.advance(timedelta(seconds=30))
        await scheduler.run_due()
        assert len(await scheduler.list()) == 1

    async def test_options_carried_to_task(self, scheduler, clock):
        condition = AsyncMock(return_value=True)
        await scheduler.schedule_when(
            "d", None, condition, check_interval=10, max_retries=0, metadata={"k": "v"}
        )

        clock.advance(timedelta(seconds=10))
        await scheduler.run_due()

        [task] = await scheduler.list()
        assert task.max_retries == 0
        assert task.metadata == {"k": "v"}

    async def test_rejects_invalid_arguments(self, scheduler):
        condition = AsyncMock(return_value=True)
        with pytest.raises(ValidationError):
            await scheduler.schedule_when("d", None, condition, check_interval=0)
        with pytest.raises(ValidationError):
            await scheduler.schedule_when("d", None, condition, max_retries=-1)
        assert scheduler.watch_count == 0

    async def test_watch_armed_on_start(self, make_scheduler, gateway, clock):
        svc = make_scheduler(gateway)
        condition = AsyncMock(return_value=True)
        await svc.schedule_when("d", None, condition, check_interval=60)
        assert svc.registry.live_timer_count == 0

        await svc.start()
        clock.advance(timedelta(seconds=60))
        await svc.run_due()

        condition.assert_awaited_once()
        assert len(await svc.list()) == 1
