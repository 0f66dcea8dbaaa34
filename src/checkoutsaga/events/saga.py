"""
Saga event kinds.

The set is closed: these classes are the only events that travel over the
bus, and the default registry knows all of them. Each payload-bearing event
carries an OrderSnapshot taken when the event was built.
"""

from uuid import UUID

from pydantic import Field

from checkoutsaga.aggregates.order import OrderSnapshot
from checkoutsaga.events.base import DomainEvent

# =============================================================================
# Checkout and payment
# =============================================================================


class OrderPlaced(DomainEvent):
    """An order was placed and is waiting for payment."""

    snapshot: OrderSnapshot
    payment_token: str


class PaymentRetryRequested(DomainEvent):
    """A failed payment should be attempted again with the given token."""

    snapshot: OrderSnapshot
    payment_token: str


class PaymentSucceeded(DomainEvent):
    """The gateway captured the order total."""

    snapshot: OrderSnapshot
    charge_id: str
    attempt_number: int = Field(default=1, ge=1)


class PaymentFailed(DomainEvent):
    """The gateway declined the charge or did not answer in time."""

    snapshot: OrderSnapshot
    reason: str
    attempt_number: int = Field(default=1, ge=1)


class PaymentRefundRequired(DomainEvent):
    """A charge succeeded for an order that was cancelled while it was in flight."""

    charge_id: str
    amount_cents: int


# =============================================================================
# Inventory and cancellation
# =============================================================================


class InventoryShortfall(DomainEvent):
    """Stock could not cover a paid line; operators must resolve it by hand."""

    product_id: str
    requested: int
    available: int


class CancellationRequested(DomainEvent):
    """An order was cancelled; handlers must not start new work for it."""

    reason: str


# =============================================================================
# Delivery diagnostics
# =============================================================================


class HandlerExhausted(DomainEvent):
    """A subscriber failed an event on every attempt and it was dead-lettered."""

    failed_event_id: UUID
    failed_event_type: str
    handler_name: str
    attempts: int
    error: str


SAGA_EVENT_TYPES: tuple[type[DomainEvent], ...] = (
    OrderPlaced,
    PaymentRetryRequested,
    PaymentSucceeded,
    PaymentFailed,
    PaymentRefundRequired,
    InventoryShortfall,
    CancellationRequested,
    HandlerExhausted,
)

SagaEvent = (
    OrderPlaced
    | PaymentRetryRequested
    | PaymentSucceeded
    | PaymentFailed
    | PaymentRefundRequired
    | InventoryShortfall
    | CancellationRequested
    | HandlerExhausted
)

# Events that end a payment attempt for an order
TERMINAL_PAYMENT_EVENTS: tuple[type[DomainEvent], ...] = (PaymentSucceeded, PaymentFailed)


__all__ = [
    "OrderPlaced",
    "PaymentRetryRequested",
    "PaymentSucceeded",
    "PaymentFailed",
    "PaymentRefundRequired",
    "InventoryShortfall",
    "CancellationRequested",
    "HandlerExhausted",
    "SAGA_EVENT_TYPES",
    "SagaEvent",
    "TERMINAL_PAYMENT_EVENTS",
]
