"""Port protocols for the scheduler's external collaborators."""

from __future__ import annotations

from .admission import IAdmissionControl
from .background_worker import IBackgroundWorker
from .clock import IClock
from .delivery import IDeliveryGateway
from .store import IKeyValueStore

__all__ = [
    # Collaborators
    "IAdmissionControl",
    "IDeliveryGateway",
    "IKeyValueStore",
    # Runtime
    "IBackgroundWorker",
    "IClock",
]
