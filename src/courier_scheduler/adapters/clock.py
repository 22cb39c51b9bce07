"""Wall-clock implementation of IClock."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone

from ..ports.clock import IClock


class SystemClock(IClock):
    """Real time, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep_until(
        self, deadline: datetime | None, wakeup: asyncio.Event
    ) -> None:
        timeout: float | None = None
        if deadline is not None:
            timeout = (deadline - self.now()).total_seconds()
            if timeout <= 0:
                return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(wakeup.wait(), timeout=timeout)
