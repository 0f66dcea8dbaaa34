"""
Shipment trigger step of the checkout saga.
"""

import logging

from checkoutsaga.collaborators import ShipmentRequest, ShipmentService
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import PaymentSucceeded
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import ATTR_EVENT_ID, ATTR_ORDER_ID
from checkoutsaga.protocols import EventSubscriber
from checkoutsaga.repositories.idempotency import IdempotencyStore

logger = logging.getLogger(__name__)


class ShipmentTriggerHandler(EventSubscriber):
    """
    Requests a shipment for every paid order, once.

    The shipment service receives the order id as its idempotency key.
    Locally a claim on ``shipment:{order_id}`` guards against duplicate
    requests; it is released when the request raises so that redelivery
    can try again.
    """

    def __init__(
        self,
        shipments: ShipmentService,
        idempotency: IdempotencyStore,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._shipments = shipments
        self._idempotency = idempotency
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [PaymentSucceeded]

    async def handle(self, event: DomainEvent) -> None:
        if not isinstance(event, PaymentSucceeded):
            return

        order_id = event.order_id
        key = f"shipment:{order_id}"
        if not await self._idempotency.claim(key):
            logger.debug(
                "Shipment for order %s already requested",
                order_id,
                extra={"order_id": str(order_id), "event_id": str(event.event_id)},
            )
            return

        requested = False
        try:
            with self._tracer.span(
                "checkoutsaga.shipment.request",
                {
                    ATTR_ORDER_ID: str(order_id),
                    ATTR_EVENT_ID: str(event.event_id),
                },
            ):
                await self._shipments.request_shipment(
                    ShipmentRequest(
                        order_id=order_id,
                        user_id=event.snapshot.user_id,
                        lines=event.snapshot.lines,
                        idempotency_key=str(order_id),
                    )
                )
            requested = True
            logger.info(
                "Shipment requested for order %s",
                order_id,
                extra={"order_id": str(order_id), "event_id": str(event.event_id)},
            )
        finally:
            if not requested:
                await self._idempotency.release(key)


__all__ = ["ShipmentTriggerHandler"]
