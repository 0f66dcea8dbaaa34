"""
Synchronous entry points of the checkout saga.

CheckoutOrchestrator validates customer input, commits the order together
with the event that starts the next step, and publishes that event after the
commit. It never waits for payment or fulfilment: everything after checkout
is driven by subscribers on the bus.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID

from pydantic import ValidationError

from checkoutsaga.aggregates.order import Order, OrderLine, OrderStatus
from checkoutsaga.aggregates.repository import OrderRepository
from checkoutsaga.bus.interface import EventBus
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import CancellationRequested, OrderPlaced, PaymentRetryRequested
from checkoutsaga.exceptions import (
    EmptyCartError,
    InvalidLineError,
    InvalidStateError,
    InvalidTokenError,
    InvalidTransitionError,
)
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_AMOUNT_CENTS,
    ATTR_EVENT_ID,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=DomainEvent)

# Opaque payment method reference issued by the gateway's client SDK
TOKEN_PATTERN = re.compile(r"^tok_[A-Za-z0-9_-]{4,128}$")


def validate_payment_token(token: str) -> None:
    """
    Check a payment token's shape without revealing it in the error.

    Raises:
        InvalidTokenError: If the token is not ``tok_`` plus 4-128 characters
            from [A-Za-z0-9_-]
    """
    if not isinstance(token, str) or not token:
        raise InvalidTokenError("token is empty")
    if not TOKEN_PATTERN.fullmatch(token):
        raise InvalidTokenError("token must be 'tok_' followed by 4-128 URL-safe characters")


@dataclass(frozen=True)
class CartItem:
    """One cart entry as submitted at checkout."""

    product_id: str
    unit_price_cents: int
    quantity: int

    def to_line(self) -> OrderLine:
        """
        Raises:
            InvalidLineError: If a field has the wrong type
        """
        try:
            return OrderLine(
                product_id=self.product_id,
                unit_price_cents=self.unit_price_cents,
                quantity=self.quantity,
            )
        except ValidationError as e:
            fields = ", ".join(".".join(map(str, err["loc"])) for err in e.errors())
            raise InvalidLineError(
                self.product_id,
                self.unit_price_cents,
                self.quantity,
                f"wrong type for {fields}",
            ) from e


@dataclass(frozen=True)
class CheckoutResult:
    order_id: UUID
    status: OrderStatus


class CheckoutOrchestrator:
    """
    Places, cancels and re-pays orders.

    Example:
        >>> orchestrator = CheckoutOrchestrator(bus, repository)
        >>> result = await orchestrator.checkout(
        ...     [CartItem("A", 500, 2)], user_id="user-1", payment_token="tok_visa_4242"
        ... )
        >>> result.status
        <OrderStatus.PLACED: 'Placed'>
    """

    def __init__(
        self,
        bus: EventBus,
        repository: OrderRepository,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._bus = bus
        self._repository = repository
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def checkout(
        self,
        items: Sequence[CartItem] | Iterable[CartItem],
        user_id: str,
        payment_token: str,
    ) -> CheckoutResult:
        """
        Place an order for the cart and start payment.

        Returns as soon as the order is committed and OrderPlaced is
        published; payment and fulfilment happen asynchronously.

        Raises:
            EmptyCartError: If items is empty
            InvalidTokenError: If the payment token is malformed
            InvalidLineError: If a line has a bad quantity, price or product id
        """
        cart = list(items)
        if not cart:
            raise EmptyCartError(user_id)
        validate_payment_token(payment_token)

        order = Order.start(user_id)
        order.add_lines(item.to_line() for item in cart)
        order.place()

        placed = OrderPlaced(
            order_id=order.order_id,
            snapshot=order.snapshot(),
            payment_token=payment_token,
        )

        with self._tracer.span(
            "checkoutsaga.orchestrator.checkout",
            {
                ATTR_ORDER_ID: str(order.order_id),
                ATTR_AMOUNT_CENTS: order.total_cents,
                ATTR_EVENT_ID: str(placed.event_id),
            },
        ):
            await self._repository.save(order, [placed])
            await self._bus.publish([placed])

        logger.info(
            "Order %s placed for user %s: %d line(s), %d cents",
            order.order_id,
            user_id,
            len(order.lines),
            order.total_cents,
            extra={
                "order_id": str(order.order_id),
                "event_id": str(placed.event_id),
                "total_cents": order.total_cents,
            },
        )
        return CheckoutResult(order_id=order.order_id, status=order.status)

    async def cancel(self, order_id: UUID, reason: str = "customer_request") -> CheckoutResult:
        """
        Cancel an order that has not been paid yet.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidTransitionError: If the order is Paid, Fulfilled or
                already Cancelled
        """

        async def apply() -> tuple[Order, CancellationRequested]:
            order = await self._repository.load(order_id)
            if not order.can_transition_to(OrderStatus.CANCELLED):
                raise InvalidTransitionError(
                    order_id, order.status.value, OrderStatus.CANCELLED.value
                )
            order.cancel(reason)
            requested = await self._correlated(
                CancellationRequested(order_id=order_id, reason=reason)
            )
            await self._repository.save(order, [requested])
            return order, requested

        with self._tracer.span("checkoutsaga.orchestrator.cancel", {ATTR_ORDER_ID: str(order_id)}):
            order, requested = await self._repository.retry_on_conflict(apply)
            await self._bus.publish([requested])

        logger.info(
            "Order %s cancelled: %s",
            order_id,
            reason,
            extra={"order_id": str(order_id), "event_id": str(requested.event_id)},
        )
        return CheckoutResult(order_id=order_id, status=order.status)

    async def retry_payment(self, order_id: UUID, payment_token: str) -> None:
        """
        Ask for another charge of an order whose payment failed.

        Raises:
            InvalidTokenError: If the payment token is malformed
            OrderNotFoundError: If the order does not exist
            InvalidStateError: If the order is not in PaymentFailed
        """
        validate_payment_token(payment_token)
        order = await self._repository.load(order_id)
        if order.status is not OrderStatus.PAYMENT_FAILED:
            raise InvalidStateError(
                order_id, order.status.value, "payment can only be retried after it failed"
            )

        requested = await self._correlated(
            PaymentRetryRequested(
                order_id=order_id,
                snapshot=order.snapshot(),
                payment_token=payment_token,
            )
        )
        with self._tracer.span(
            "checkoutsaga.orchestrator.retry_payment",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ORDER_STATUS: order.status.value,
                ATTR_EVENT_ID: str(requested.event_id),
            },
        ):
            await self._bus.publish([requested])

        logger.info(
            "Payment retry requested for order %s",
            order_id,
            extra={"order_id": str(order_id), "event_id": str(requested.event_id)},
        )

    async def get_status(self, order_id: UUID) -> OrderStatus:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self._repository.load(order_id)
        return order.status

    async def _correlated(self, event: E) -> E:
        """Give a follow-up event the correlation id of the order's checkout."""
        logged = await self._repository.store.event_log.events_for_order(event.order_id)
        if not logged:
            return event
        return event.model_copy(update={"correlation_id": logged[0].event.correlation_id})


__all__ = [
    "CartItem",
    "CheckoutOrchestrator",
    "CheckoutResult",
    "TOKEN_PATTERN",
    "validate_payment_token",
]
