"""Library exceptions for the checkoutsaga package.

Errors fall into four groups:

- Validation errors are raised synchronously at the checkout boundary and
  never enter the saga.
- State errors signal a broken transition contract or a lost
  compare-and-set race on an order.
- Integration errors are expected operational outcomes that handlers convert
  into domain events rather than letting them escape.
- Bus errors cover delivery infrastructure.
"""

from uuid import UUID


class CheckoutSagaError(Exception):
    """Base exception for checkoutsaga library."""

    pass


# =============================================================================
# Validation errors
# =============================================================================


class CheckoutValidationError(CheckoutSagaError):
    """Raised when checkout input is rejected before an order exists."""

    pass


class InvalidLineError(CheckoutValidationError):
    """Raised when an order line has a non-positive quantity or a negative price."""

    def __init__(self, product_id: str, unit_price_cents: int, quantity: int, reason: str) -> None:
        self.product_id = product_id
        self.unit_price_cents = unit_price_cents
        self.quantity = quantity
        self.reason = reason
        super().__init__(
            f"Invalid order line for product {product_id!r} "
            f"(unit_price_cents={unit_price_cents}, quantity={quantity}): {reason}"
        )


class EmptyCartError(CheckoutValidationError):
    """Raised when checkout is attempted with no items."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Cannot check out an empty cart for user {user_id}")


class InvalidTokenError(CheckoutValidationError):
    """Raised when a payment method token is malformed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        # The token itself is never echoed back.
        super().__init__(f"Malformed payment token: {reason}")


# =============================================================================
# State errors
# =============================================================================


class OrderStateError(CheckoutSagaError):
    """Base class for order state machine errors."""

    pass


class InvalidStateError(OrderStateError):
    """Raised when an order operation requires a state the order is not in."""

    def __init__(self, order_id: UUID, status: str, message: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} in status {status}: {message}")


class InvalidTransitionError(OrderStateError):
    """Raised when a status transition is not allowed from the current status."""

    def __init__(self, order_id: UUID, from_status: str, to_status: str) -> None:
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for order {order_id}: {from_status} -> {to_status}"
        )


class ConcurrentModificationError(OrderStateError):
    """Raised when an order was changed by someone else since it was loaded."""

    def __init__(self, order_id: UUID, expected_version: int, actual_version: int) -> None:
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of order {order_id}: "
            f"expected version {expected_version}, but current version is {actual_version}"
        )


class OrderNotFoundError(OrderStateError):
    """Raised when an order cannot be found."""

    def __init__(self, order_id: UUID) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


# =============================================================================
# Integration errors
# =============================================================================


class IntegrationError(CheckoutSagaError):
    """Base class for failures reported by collaborators."""

    pass


class InsufficientStockError(IntegrationError):
    """Raised when a decrement would drive a product's stock negative."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id!r}: "
            f"requested {requested}, available {available}"
        )


# =============================================================================
# Bus and serialization errors
# =============================================================================


class EventBusError(CheckoutSagaError):
    """Raised when there's an error in the event bus."""

    pass


class DeadLetterNotFoundError(EventBusError):
    """Raised when a dead-letter entry cannot be found or redelivered."""

    def __init__(self, entry_id: int) -> None:
        self.entry_id = entry_id
        super().__init__(f"Dead-letter entry not found: {entry_id}")


class SerializationError(CheckoutSagaError):
    """Raised when event serialization or deserialization fails."""

    def __init__(self, event_type: str, message: str) -> None:
        self.event_type = event_type
        super().__init__(f"Serialization error for {event_type}: {message}")
