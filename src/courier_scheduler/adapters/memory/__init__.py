from .admission import AllowAllAdmissionControl, FixedWindowAdmissionControl
from .clock import ManualClock
from .delivery import RecordingDeliveryGateway, SentMessage
from .store import InMemoryKeyValueStore

__all__ = [
    "AllowAllAdmissionControl",
    "FixedWindowAdmissionControl",
    "InMemoryKeyValueStore",
    "ManualClock",
    "RecordingDeliveryGateway",
    "SentMessage",
]
