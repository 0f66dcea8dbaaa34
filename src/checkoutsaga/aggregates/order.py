"""
Order aggregate and its value types.

The Order owns the checkout state machine:

    Draft -> Placed -> PaymentPending -> Paid -> Fulfilled
                       PaymentPending -> PaymentFailed -> PaymentPending (retry)
                                         PaymentFailed -> Cancelled
    Placed | PaymentPending -> Cancelled

Fulfilled and Cancelled are terminal. The aggregate knows nothing about the
event bus; whoever saves it decides which events accompany the commit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from checkoutsaga.aggregates.base import AggregateRoot
from checkoutsaga.exceptions import (
    InvalidLineError,
    InvalidStateError,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    """Lifecycle status of an order."""

    DRAFT = "Draft"
    PLACED = "Placed"
    PAYMENT_PENDING = "PaymentPending"
    PAID = "Paid"
    PAYMENT_FAILED = "PaymentFailed"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FULFILLED, OrderStatus.CANCELLED)


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.PLACED}),
    OrderStatus.PLACED: frozenset({OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAYMENT_FAILED: frozenset({OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.FULFILLED}),
    OrderStatus.FULFILLED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class OrderLine(BaseModel):
    """
    One product line of an order.

    Values are checked by Order.add_lines rather than by field constraints,
    so bad input surfaces as InvalidLineError.
    """

    model_config = ConfigDict(frozen=True)

    product_id: str
    unit_price_cents: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class OrderSnapshot(BaseModel):
    """
    Read-only projection of an order carried inside events.

    Built at event-construction time so handlers never see a live Order.
    """

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    user_id: str
    lines: tuple[OrderLine, ...]
    total_cents: int


class OrderState(BaseModel):
    """State of an Order aggregate."""

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    user_id: str
    lines: tuple[OrderLine, ...] = ()
    total_cents: int = 0
    status: OrderStatus = OrderStatus.DRAFT
    failure_reason: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Order(AggregateRoot[OrderState]):
    """
    Order aggregate root.

    Example:
        >>> order = Order.start("user-1")
        >>> order.add_lines([OrderLine(product_id="A", unit_price_cents=500, quantity=2)])
        >>> order.place()
        >>> order.status
        <OrderStatus.PLACED: 'Placed'>
        >>> order.total_cents
        1000
    """

    aggregate_type = "Order"

    @classmethod
    def start(cls, user_id: str, order_id: UUID | None = None) -> Order:
        """Create a new order in Draft for the given owner."""
        order = cls(order_id or uuid4())
        order._set_state(OrderState(order_id=order.aggregate_id, user_id=user_id))
        return order

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def order_id(self) -> UUID:
        return self.aggregate_id

    @property
    def user_id(self) -> str:
        return self.state.user_id

    @property
    def lines(self) -> tuple[OrderLine, ...]:
        return self.state.lines

    @property
    def total_cents(self) -> int:
        return self.state.total_cents

    @property
    def status(self) -> OrderStatus:
        return self.state.status

    @property
    def failure_reason(self) -> str | None:
        return self.state.failure_reason

    @property
    def cancellation_reason(self) -> str | None:
        return self.state.cancellation_reason

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> OrderSnapshot:
        """Build an immutable snapshot for event payloads."""
        return OrderSnapshot(
            order_id=self.order_id,
            user_id=self.user_id,
            lines=self.lines,
            total_cents=self.total_cents,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_lines(self, items: Iterable[OrderLine]) -> None:
        """
        Append lines to a Draft order and recompute the total.

        Raises:
            InvalidStateError: If the order has left Draft
            InvalidLineError: If a line has quantity <= 0, a negative price,
                or an empty product id
        """
        if self.status is not OrderStatus.DRAFT:
            raise InvalidStateError(
                self.order_id, self.status.value, "lines can only be added to a Draft order"
            )

        new_lines = list(items)
        for line in new_lines:
            _validate_line(line)

        lines = (*self.lines, *new_lines)
        self._set_state(
            self.state.model_copy(
                update={
                    "lines": lines,
                    "total_cents": sum(line.subtotal_cents for line in lines),
                    "updated_at": datetime.now(UTC),
                }
            )
        )

    def place(self) -> None:
        """
        Move a Draft order with at least one line to Placed.

        Raises:
            InvalidStateError: If the order is not in Draft or has no lines
        """
        if self.status is not OrderStatus.DRAFT:
            raise InvalidStateError(
                self.order_id, self.status.value, "only a Draft order can be placed"
            )
        if not self.lines:
            raise InvalidStateError(
                self.order_id, self.status.value, "cannot place an order without lines"
            )
        self._transition(OrderStatus.PLACED)

    def mark_payment_pending(self) -> None:
        """Placed or PaymentFailed -> PaymentPending."""
        self._transition(OrderStatus.PAYMENT_PENDING, failure_reason=None)

    def mark_paid(self) -> None:
        """PaymentPending -> Paid."""
        self._transition(OrderStatus.PAID)

    def mark_payment_failed(self, reason: str) -> None:
        """PaymentPending -> PaymentFailed, remembering the gateway's reason."""
        self._transition(OrderStatus.PAYMENT_FAILED, failure_reason=reason)

    def fulfill(self) -> None:
        """Paid -> Fulfilled."""
        self._transition(OrderStatus.FULFILLED)

    def cancel(self, reason: str = "customer_request") -> None:
        """Placed, PaymentPending or PaymentFailed -> Cancelled."""
        self._transition(OrderStatus.CANCELLED, cancellation_reason=reason)

    def can_transition_to(self, status: OrderStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def _transition(self, target: OrderStatus, **changes: object) -> None:
        current = self.status
        if not self.can_transition_to(target):
            raise InvalidTransitionError(self.order_id, current.value, target.value)

        self._set_state(
            self.state.model_copy(
                update={"status": target, "updated_at": datetime.now(UTC), **changes}
            )
        )
        logger.debug(
            "Order %s: %s -> %s",
            self.order_id,
            current.value,
            target.value,
            extra={
                "order_id": str(self.order_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )


def _validate_line(line: OrderLine) -> None:
    if not line.product_id:
        raise InvalidLineError(
            line.product_id, line.unit_price_cents, line.quantity, "product id must not be empty"
        )
    if line.quantity <= 0:
        raise InvalidLineError(
            line.product_id, line.unit_price_cents, line.quantity, "quantity must be positive"
        )
    if line.unit_price_cents < 0:
        raise InvalidLineError(
            line.product_id, line.unit_price_cents, line.quantity, "price must not be negative"
        )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "Order",
    "OrderLine",
    "OrderSnapshot",
    "OrderState",
    "OrderStatus",
]
