"""
Aggregates of the checkout saga.

OrderRepository lives in ``checkoutsaga.aggregates.repository``.
"""

from checkoutsaga.aggregates.base import AggregateRoot
from checkoutsaga.aggregates.order import (
    ALLOWED_TRANSITIONS,
    Order,
    OrderLine,
    OrderSnapshot,
    OrderState,
    OrderStatus,
)

__all__ = [
    "AggregateRoot",
    "ALLOWED_TRANSITIONS",
    "Order",
    "OrderLine",
    "OrderSnapshot",
    "OrderState",
    "OrderStatus",
]
