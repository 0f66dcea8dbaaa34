"""
Checkout saga steps.

The saga is a choreography: each step is an EventSubscriber that reacts to
one or more events and publishes the next one. CheckoutOrchestrator is the
synchronous entry point that starts it.

    OrderPlaced ──► PaymentSagaHandler ──► PaymentSucceeded ─┬─► InventoryReservationService
                                       └─► PaymentFailed     ├─► FulfillmentHandler
                                                             └─► ShipmentTriggerHandler
"""

from checkoutsaga.saga.cancellation import CancellationSignals
from checkoutsaga.saga.fulfillment import ORDER_FULFILLED_TEMPLATE, FulfillmentHandler
from checkoutsaga.saga.inventory import InventoryReservationService
from checkoutsaga.saga.notifications import PAYMENT_FAILED_TEMPLATE, PaymentFailureNotifier
from checkoutsaga.saga.orchestrator import (
    TOKEN_PATTERN,
    CartItem,
    CheckoutOrchestrator,
    CheckoutResult,
    validate_payment_token,
)
from checkoutsaga.saga.payment import (
    GATEWAY_ERROR_REASON,
    TIMEOUT_REASON,
    PaymentSagaHandler,
    idempotency_key_for,
)
from checkoutsaga.saga.shipment import ShipmentTriggerHandler

__all__ = [
    "CancellationSignals",
    "CartItem",
    "CheckoutOrchestrator",
    "CheckoutResult",
    "FulfillmentHandler",
    "GATEWAY_ERROR_REASON",
    "InventoryReservationService",
    "ORDER_FULFILLED_TEMPLATE",
    "PAYMENT_FAILED_TEMPLATE",
    "PaymentFailureNotifier",
    "PaymentSagaHandler",
    "ShipmentTriggerHandler",
    "TIMEOUT_REASON",
    "TOKEN_PATTERN",
    "idempotency_key_for",
    "validate_payment_token",
]
