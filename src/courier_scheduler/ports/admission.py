"""Pre-delivery admission (rate) gate."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.results import AdmissionDecision


@runtime_checkable
class IAdmissionControl(Protocol):
    """Port consulted before every delivery attempt.

    A denial is not a delivery failure: the scheduler defers the task by
    ``retry_after`` without consuming a retry.
    """

    async def check_and_consume(
        self, destination: str, weight: int = 1
    ) -> AdmissionDecision:
        """Check the budget for ``destination`` and consume ``weight`` if allowed."""
        ...
