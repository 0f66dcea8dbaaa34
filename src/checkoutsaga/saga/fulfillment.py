"""
Fulfillment step of the checkout saga.
"""

import logging

from checkoutsaga.aggregates.order import Order, OrderStatus
from checkoutsaga.aggregates.repository import OrderRepository
from checkoutsaga.collaborators import NotificationRequest, NotificationService
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import PaymentSucceeded
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import ATTR_EVENT_ID, ATTR_ORDER_ID
from checkoutsaga.protocols import EventSubscriber
from checkoutsaga.repositories.idempotency import IdempotencyStore

logger = logging.getLogger(__name__)

ORDER_FULFILLED_TEMPLATE = "order_fulfilled"


class FulfillmentHandler(EventSubscriber):
    """
    Moves paid orders to Fulfilled and tells the customer.

    The notification is claimed in the idempotency store before it is sent
    and the claim is released if sending raises, so a redelivery retries the
    notification without sending it twice.
    """

    def __init__(
        self,
        repository: OrderRepository,
        notifications: NotificationService,
        idempotency: IdempotencyStore,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._repository = repository
        self._notifications = notifications
        self._idempotency = idempotency
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [PaymentSucceeded]

    async def handle(self, event: DomainEvent) -> None:
        if not isinstance(event, PaymentSucceeded):
            return

        with self._tracer.span(
            "checkoutsaga.fulfillment.handle",
            {
                ATTR_ORDER_ID: str(event.order_id),
                ATTR_EVENT_ID: str(event.event_id),
            },
        ):
            order = await self._repository.retry_on_conflict(lambda: self._fulfill(event))
            if order.status is not OrderStatus.FULFILLED:
                return
            await self._notify(event)

    async def _fulfill(self, event: PaymentSucceeded) -> Order:
        order = await self._repository.load(event.order_id)
        if order.status is OrderStatus.PAID:
            order.fulfill()
            await self._repository.save(order)
            logger.info(
                "Order %s fulfilled",
                order.order_id,
                extra={"order_id": str(order.order_id), "event_id": str(event.event_id)},
            )
        elif order.status is not OrderStatus.FULFILLED:
            logger.debug(
                "Order %s is %s, not fulfilling",
                order.order_id,
                order.status.value,
                extra={"order_id": str(order.order_id), "status": order.status.value},
            )
        return order

    async def _notify(self, event: PaymentSucceeded) -> None:
        key = f"notification:{ORDER_FULFILLED_TEMPLATE}:{event.order_id}"
        if not await self._idempotency.claim(key):
            return

        sent = False
        try:
            await self._notifications.send(
                NotificationRequest(
                    user_id=event.snapshot.user_id,
                    order_id=event.order_id,
                    template=ORDER_FULFILLED_TEMPLATE,
                    context={
                        "total_cents": event.snapshot.total_cents,
                        "charge_id": event.charge_id,
                    },
                )
            )
            sent = True
        finally:
            if not sent:
                await self._idempotency.release(key)


__all__ = ["FulfillmentHandler", "ORDER_FULFILLED_TEMPLATE"]
