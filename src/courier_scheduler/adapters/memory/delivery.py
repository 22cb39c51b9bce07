"""Scriptable in-memory gateway for tests and demos."""

from __future__ import annotations

import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Union

from courier_scheduler.domain.results import (
    DeliveryFailure,
    DeliveryResult,
    DeliverySuccess,
)
from courier_scheduler.ports.delivery import IDeliveryGateway

Outcome = Union[DeliveryResult, BaseException]


@dataclass(frozen=True)
class SentMessage:
    destination: str
    payload: Any
    result: DeliveryResult | None


class RecordingDeliveryGateway(IDeliveryGateway):
    """
    Records every ``send`` and replays scripted outcomes.

    Outcomes are consumed in order; exceptions in the script are raised. Once
    the script runs out, every send succeeds.

    Example::

        gateway = RecordingDeliveryGateway(
            [DeliveryFailure("timeout"), DeliveryFailure("timeout")]
        )
    """

    def __init__(self, outcomes: Iterable[Outcome] = ()) -> None:
        self._outcomes: deque[Outcome] = deque(outcomes)
        self.sent: list[SentMessage] = []

    def script(self, *outcomes: Outcome) -> None:
        self._outcomes.extend(outcomes)

    def fail_next(self, count: int = 1, reason: str = "delivery failed") -> None:
        self._outcomes.extend(DeliveryFailure(reason) for _ in range(count))

    async def send(self, destination: str, payload: Any) -> DeliveryResult:
        outcome: Outcome = (
            self._outcomes.popleft()
            if self._outcomes
            else DeliverySuccess(delivery_id=str(uuid.uuid4()))
        )
        if isinstance(outcome, BaseException):
            self.sent.append(SentMessage(destination, payload, None))
            raise outcome
        self.sent.append(SentMessage(destination, payload, outcome))
        return outcome

    # --- Test helpers ---

    @property
    def attempt_count(self) -> int:
        return len(self.sent)

    def attempts_for(self, destination: str) -> list[SentMessage]:
        return [m for m in self.sent if m.destination == destination]
