"""
Contracts for the services the saga talks to.

The saga never implements these; the application passes concrete
implementations to CheckoutSaga. ``checkoutsaga.testing`` ships fakes.

Payment outcomes are values, not exceptions: a declined card is a
ChargeFailed result. Shipment and notification requests are fire-and-forget;
raising from them means the request was rejected and the delivery is retried.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from checkoutsaga.aggregates.order import OrderLine


@dataclass(frozen=True)
class ChargeSucceeded:
    """The gateway captured the amount; charge_id is its reference."""

    charge_id: str


@dataclass(frozen=True)
class ChargeFailed:
    """The gateway refused the charge, e.g. reason="card_declined"."""

    reason: str


ChargeResult = ChargeSucceeded | ChargeFailed


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Opaque charge API.

    Implementations must be idempotent per idempotency_key: charging again
    with a key already used returns the first result without a second capture.
    """

    gateway_id: str

    async def charge(self, token: str, amount_cents: int, idempotency_key: str) -> ChargeResult: ...


@dataclass(frozen=True)
class ShipmentRequest:
    order_id: UUID
    user_id: str
    lines: tuple[OrderLine, ...]
    idempotency_key: str


@runtime_checkable
class ShipmentService(Protocol):
    async def request_shipment(self, request: ShipmentRequest) -> None:
        """Ask for a shipment to be created. Must be idempotent per idempotency_key."""
        ...


@dataclass(frozen=True)
class NotificationRequest:
    """
    Out-of-band message to the order's owner.

    Attributes:
        user_id: Recipient
        order_id: Order the message is about
        template: Message kind, e.g. "order_fulfilled" or "payment_failed"
        context: Template values
    """

    user_id: str
    order_id: UUID
    template: str
    context: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class NotificationService(Protocol):
    async def send(self, request: NotificationRequest) -> None: ...


__all__ = [
    "ChargeFailed",
    "ChargeResult",
    "ChargeSucceeded",
    "NotificationRequest",
    "NotificationService",
    "PaymentGateway",
    "ShipmentRequest",
    "ShipmentService",
]
