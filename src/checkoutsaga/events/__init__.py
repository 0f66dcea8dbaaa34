"""Domain events of the checkout saga."""

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.registry import (
    DuplicateEventTypeError,
    EventRegistry,
    EventTypeNotFoundError,
    default_registry,
)
from checkoutsaga.events.saga import (
    SAGA_EVENT_TYPES,
    TERMINAL_PAYMENT_EVENTS,
    CancellationRequested,
    HandlerExhausted,
    InventoryShortfall,
    OrderPlaced,
    PaymentFailed,
    PaymentRefundRequired,
    PaymentRetryRequested,
    PaymentSucceeded,
    SagaEvent,
)

__all__ = [
    "DomainEvent",
    "EventRegistry",
    "EventTypeNotFoundError",
    "DuplicateEventTypeError",
    "default_registry",
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
