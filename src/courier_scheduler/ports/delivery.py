"""Delivery gateway port."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..domain.results import DeliveryResult


@runtime_checkable
class IDeliveryGateway(Protocol):
    """Port for delivering a payload to a destination.

    The scheduler treats anything other than a
    :class:`~courier_scheduler.domain.DeliverySuccess`, raised exceptions
    included, as a delivery failure.

    Usage::

        class WebhookGateway:
            async def send(self, destination, payload):
                resp = await client.post(destination, json=payload)
                if resp.is_success:
                    return DeliverySuccess(resp.headers.get("x-request-id"))
                return DeliveryFailure(f"HTTP {resp.status_code}")
    """

    async def send(self, destination: str, payload: Any) -> DeliveryResult:
        ...
