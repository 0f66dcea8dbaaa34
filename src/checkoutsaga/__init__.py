"""
checkoutsaga - Event-driven order checkout and fulfillment saga.

This library provides:
- Order aggregate with an explicit checkout state machine and optimistic locking
- In-process event bus with per-subscription ordering, retries and dead-lettering
- Payment, inventory, fulfillment and shipment saga steps
- In-memory and SQLite order stores with an append-only event log
- Test fakes and a wired test harness (``checkoutsaga.testing``)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("checkout-saga")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Aggregates
from checkoutsaga.aggregates.base import AggregateRoot
from checkoutsaga.aggregates.order import (
    ALLOWED_TRANSITIONS,
    Order,
    OrderLine,
    OrderSnapshot,
    OrderState,
    OrderStatus,
)
from checkoutsaga.aggregates.repository import OrderRepository

# Event bus
from checkoutsaga.bus.interface import EventBus, EventHandlerFunc
from checkoutsaga.bus.memory import InMemoryEventBus
from checkoutsaga.bus.retry import RetryConfig, calculate_backoff

# Collaborator contracts
from checkoutsaga.collaborators import (
    ChargeFailed,
    ChargeResult,
    ChargeSucceeded,
    NotificationRequest,
    NotificationService,
    PaymentGateway,
    ShipmentRequest,
    ShipmentService,
)
from checkoutsaga.config import SagaConfig

# Events
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.registry import (
    DuplicateEventTypeError,
    EventRegistry,
    EventTypeNotFoundError,
    default_registry,
)
from checkoutsaga.events.saga import (
    SAGA_EVENT_TYPES,
    CancellationRequested,
    HandlerExhausted,
    InventoryShortfall,
    OrderPlaced,
    PaymentFailed,
    PaymentRefundRequired,
    PaymentRetryRequested,
    PaymentSucceeded,
)

# Exceptions
from checkoutsaga.exceptions import (
    CheckoutSagaError,
    CheckoutValidationError,
    ConcurrentModificationError,
    DeadLetterNotFoundError,
    EmptyCartError,
    EventBusError,
    InsufficientStockError,
    IntegrationError,
    InvalidLineError,
    InvalidStateError,
    InvalidTokenError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderStateError,
    SerializationError,
)

# Handlers and protocols
from checkoutsaga.handlers.adapter import HandlerAdapter
from checkoutsaga.protocols import (
    EventSubscriber,
    FlexibleEventHandler,
)

# Repositories
from checkoutsaga.repositories import (
    DeadLetterEntry,
    DeadLetterSink,
    DeadLetterStats,
    IdempotencyStore,
    InMemoryDeadLetterSink,
    InMemoryIdempotencyStore,
    InMemoryPaymentAttemptLedger,
    InMemoryStockLedger,
    PaymentAttempt,
    PaymentAttemptLedger,
    PaymentOutcome,
    StockLedger,
    StockReservation,
)

# Runtime
from checkoutsaga.runtime import CheckoutSaga

# Saga steps
from checkoutsaga.saga import (
    CancellationSignals,
    CartItem,
    CheckoutOrchestrator,
    CheckoutResult,
    FulfillmentHandler,
    InventoryReservationService,
    PaymentFailureNotifier,
    PaymentSagaHandler,
    ShipmentTriggerHandler,
)

# Stores
from checkoutsaga.stores import (
    EventLog,
    InMemoryEventLog,
    InMemoryOrderStore,
    OrderRecord,
    OrderStore,
    StoredEvent,
)

__all__ = [
    "__version__",
    # Aggregates
    "AggregateRoot",
    "ALLOWED_TRANSITIONS",
    "Order",
    "OrderLine",
    "OrderRepository",
    "OrderSnapshot",
    "OrderState",
    "OrderStatus",
    # Event bus
    "EventBus",
    "EventHandlerFunc",
    "InMemoryEventBus",
    "RetryConfig",
    "calculate_backoff",
    # Collaborators
    "ChargeFailed",
    "ChargeResult",
    "ChargeSucceeded",
    "NotificationRequest",
    "NotificationService",
    "PaymentGateway",
    "ShipmentRequest",
    "ShipmentService",
    # Configuration
    "SagaConfig",
    # Events
    "DomainEvent",
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
    "SAGA_EVENT_TYPES",
    "CancellationRequested",
    "HandlerExhausted",
    "InventoryShortfall",
    "OrderPlaced",
    "PaymentFailed",
    "PaymentRefundRequired",
    "PaymentRetryRequested",
    "PaymentSucceeded",
    # Exceptions
    "CheckoutSagaError",
    "CheckoutValidationError",
    "ConcurrentModificationError",
    "DeadLetterNotFoundError",
    "EmptyCartError",
    "EventBusError",
    "InsufficientStockError",
    "IntegrationError",
    "InvalidLineError",
    "InvalidStateError",
    "InvalidTokenError",
    "InvalidTransitionError",
    "OrderNotFoundError",
    "OrderStateError",
    "SerializationError",
    # Handlers and protocols
    "EventSubscriber",
    "FlexibleEventHandler",
    "HandlerAdapter",
    # Repositories
    "DeadLetterEntry",
    "DeadLetterSink",
    "DeadLetterStats",
    "IdempotencyStore",
    "InMemoryDeadLetterSink",
    "InMemoryIdempotencyStore",
    "InMemoryPaymentAttemptLedger",
    "InMemoryStockLedger",
    "PaymentAttempt",
    "PaymentAttemptLedger",
    "PaymentOutcome",
    "StockLedger",
    "StockReservation",
    # Runtime
    "CheckoutSaga",
    # Saga steps
    "CancellationSignals",
    "CartItem",
    "CheckoutOrchestrator",
    "CheckoutResult",
    "FulfillmentHandler",
    "InventoryReservationService",
    "PaymentFailureNotifier",
    "PaymentSagaHandler",
    "ShipmentTriggerHandler",
    # Stores
    "EventLog",
    "InMemoryEventLog",
    "InMemoryOrderStore",
    "OrderRecord",
    "OrderStore",
    "StoredEvent",
]
