"""Time source protocol used by the scheduler."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    import asyncio
    from datetime import datetime


@runtime_checkable
class IClock(Protocol):
    """Injectable time source.

    ``SystemClock`` is used in production; ``ManualClock`` gives tests a
    virtual timeline.
    """

    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        ...

    async def sleep_until(
        self, deadline: datetime | None, wakeup: asyncio.Event
    ) -> None:
        """Return once ``deadline`` has passed or ``wakeup`` is set.

        ``deadline=None`` waits for ``wakeup`` only.
        """
        ...
