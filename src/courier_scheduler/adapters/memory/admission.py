"""In-memory admission controllers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from courier_scheduler.domain.results import (
    AdmissionAllowed,
    AdmissionDecision,
    AdmissionDenied,
)
from courier_scheduler.ports.admission import IAdmissionControl

from ..clock import SystemClock

if TYPE_CHECKING:
    from courier_scheduler.ports.clock import IClock

logger = logging.getLogger("courier_scheduler.admission")


class AllowAllAdmissionControl(IAdmissionControl):
    """Admits every attempt. The scheduler's default."""

    async def check_and_consume(
        self, destination: str, weight: int = 1
    ) -> AdmissionDecision:
        return AdmissionAllowed()


@dataclass
class _Window:
    started_at: datetime
    used: int = 0


class FixedWindowAdmissionControl(IAdmissionControl):
    """Per-destination fixed-window budget.

    Each destination may consume ``max_requests`` units of weight per
    ``window``. A denial carries the time left until the window resets.
    """

    def __init__(
        self,
        max_requests: int,
        window: timedelta,
        clock: IClock | None = None,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self._max_requests = max_requests
        self._window = window
        self._clock = clock or SystemClock()
        self._windows: dict[str, _Window] = {}

    async def check_and_consume(
        self, destination: str, weight: int = 1
    ) -> AdmissionDecision:
        now = self._clock.now()
        current = self._windows.get(destination)
        if current is None or now >= current.started_at + self._window:
            current = _Window(started_at=now)
            self._windows[destination] = current

        if current.used + weight > self._max_requests:
            retry_after = current.started_at + self._window - now
            logger.debug(
                "Admission denied for %s (used=%d, limit=%d, retry_after=%.1fs)",
                destination,
                current.used,
                self._max_requests,
                retry_after.total_seconds(),
            )
            return AdmissionDenied(retry_after=retry_after)

        current.used += weight
        return AdmissionAllowed()

    def remaining(self, destination: str) -> int:
        current = self._windows.get(destination)
        if current is None or self._clock.now() >= current.started_at + self._window:
            return self._max_requests
        return max(0, self._max_requests - current.used)

    def reset(self, destination: str | None = None) -> None:
        if destination is None:
            self._windows.clear()
        else:
            self._windows.pop(destination, None)
