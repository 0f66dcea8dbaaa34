"""
Standard span attributes for checkoutsaga.

Attribute constants used across components for consistent span naming.
These follow OpenTelemetry semantic conventions where applicable.

Example:
    >>> from checkoutsaga.observability.attributes import ATTR_ORDER_ID
    >>>
    >>> with tracer.span(
    ...     "checkoutsaga.repository.save",
    ...     {ATTR_ORDER_ID: str(order_id)},
    ... ):
    ...     pass
"""

# =============================================================================
# Order Attributes
# =============================================================================

ATTR_ORDER_ID = "checkoutsaga.order.id"
"""Unique identifier of the order (UUID string)."""

ATTR_ORDER_STATUS = "checkoutsaga.order.status"
"""Status of the order after the operation."""

ATTR_AMOUNT_CENTS = "checkoutsaga.amount_cents"
"""Monetary amount involved in the operation, in cents (integer)."""

ATTR_PRODUCT_ID = "checkoutsaga.product.id"
"""Product identifier for stock operations."""

# =============================================================================
# Event Attributes
# =============================================================================

ATTR_EVENT_ID = "checkoutsaga.event.id"
"""Unique identifier for the event (UUID string)."""

ATTR_EVENT_TYPE = "checkoutsaga.event.type"
"""Type name of the event (e.g., 'OrderPlaced')."""

ATTR_EVENT_COUNT = "checkoutsaga.event.count"
"""Number of events in an operation (integer)."""

# =============================================================================
# Version Attributes
# =============================================================================

ATTR_VERSION = "checkoutsaga.version"
"""Version of an order after the operation (integer)."""

ATTR_EXPECTED_VERSION = "checkoutsaga.expected_version"
"""Expected version for optimistic concurrency (integer)."""

# =============================================================================
# Handler Attributes
# =============================================================================

ATTR_HANDLER_NAME = "checkoutsaga.handler.name"
"""Name of the subscription handling an event."""

ATTR_HANDLER_COUNT = "checkoutsaga.handler.count"
"""Number of subscriptions an event was dispatched to (integer)."""

ATTR_HANDLER_SUCCESS = "checkoutsaga.handler.success"
"""Whether the handler completed without raising (boolean)."""

ATTR_ATTEMPT = "checkoutsaga.delivery.attempt"
"""1-based delivery attempt number (integer)."""

ATTR_GATEWAY_ID = "checkoutsaga.payment.gateway"
"""Identifier of the payment gateway."""

ATTR_ERROR_TYPE = "checkoutsaga.error.type"
"""Class name of the exception that failed the operation."""

ATTR_DEAD_LETTER_ID = "checkoutsaga.dead_letter.id"
"""Identifier of a dead-letter entry (integer)."""

# =============================================================================
# Database Attributes (OTEL semantic)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system (e.g., 'sqlite', 'memory')."""

__all__ = [
    "ATTR_ORDER_ID",
    "ATTR_ORDER_STATUS",
    "ATTR_AMOUNT_CENTS",
    "ATTR_PRODUCT_ID",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_VERSION",
    "ATTR_EXPECTED_VERSION",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_ATTEMPT",
    "ATTR_GATEWAY_ID",
    "ATTR_ERROR_TYPE",
    "ATTR_DEAD_LETTER_ID",
    "ATTR_DB_SYSTEM",
]
