"""Tests for the in-memory admission controllers."""

from datetime import datetime, timedelta, timezone

import pytest

from courier_scheduler.adapters.memory import (
    AllowAllAdmissionControl,
    FixedWindowAdmissionControl,
    ManualClock,
)
from courier_scheduler.domain import AdmissionAllowed, AdmissionDenied
from courier_scheduler.ports import IAdmissionControl

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_allow_all() -> None:
    control = AllowAllAdmissionControl()
    assert isinstance(control, IAdmissionControl)
    decision = await control.check_and_consume("anything", weight=100)
    assert decision.allowed


@pytest.mark.asyncio
class TestFixedWindowAdmissionControl:
    async def test_denies_when_budget_spent(self) -> None:
        clock = ManualClock(T0)
        control = FixedWindowAdmissionControl(2, timedelta(minutes=1), clock)

        assert isinstance(await control.check_and_consume("a"), AdmissionAllowed)
        clock.advance(10)
        assert isinstance(await control.check_and_consume("a"), AdmissionAllowed)
        denied = await control.check_and_consume("a")

        assert isinstance(denied, AdmissionDenied)
        assert not denied.allowed
        assert denied.retry_after == timedelta(seconds=50)
        assert control.remaining("a") == 0

    async def test_destinations_have_separate_budgets(self) -> None:
        control = FixedWindowAdmissionControl(1, timedelta(minutes=1), ManualClock(T0))
        assert (await control.check_and_consume("a")).allowed
        assert (await control.check_and_consume("b")).allowed
        assert not (await control.check_and_consume("a")).allowed

    async def test_window_resets(self) -> None:
        clock = ManualClock(T0)
        control = FixedWindowAdmissionControl(1, timedelta(minutes=1), clock)
        await control.check_and_consume("a")
        clock.advance(60)
        assert control.remaining("a") == 1
        assert (await control.check_and_consume("a")).allowed

    async def test_weight(self) -> None:
        control = FixedWindowAdmissionControl(3, timedelta(minutes=1), ManualClock(T0))
        assert (await control.check_and_consume("a", weight=2)).allowed
        assert not (await control.check_and_consume("a", weight=2)).allowed
        assert (await control.check_and_consume("a", weight=1)).allowed

    async def test_reset(self) -> None:
        control = FixedWindowAdmissionControl(1, timedelta(minutes=1), ManualClock(T0))
        await control.check_and_consume("a")
        control.reset("a")
        assert (await control.check_and_consume("a")).allowed

    async def test_invalid_arguments(self) -> None:
        with pytest.raises(ValueError):
            FixedWindowAdmissionControl(0, timedelta(minutes=1))
        with pytest.raises(ValueError):
            FixedWindowAdmissionControl(1, timedelta(0))
