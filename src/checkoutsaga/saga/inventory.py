"""
Inventory reservation step of the checkout saga.

Stock is reserved only after payment succeeded, so a paid order can find a
product sold out. The service does not undo the payment in that case; it
publishes InventoryShortfall once per (product, order) and leaves resolution
to operators.
"""

import logging
from collections.abc import Iterable

from checkoutsaga.aggregates.order import OrderLine
from checkoutsaga.bus.interface import EventBus
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import CancellationRequested, InventoryShortfall, PaymentSucceeded
from checkoutsaga.exceptions import InsufficientStockError
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import ATTR_EVENT_ID, ATTR_ORDER_ID
from checkoutsaga.protocols import EventSubscriber
from checkoutsaga.repositories.stock import StockLedger

logger = logging.getLogger(__name__)


def units_per_product(lines: Iterable[OrderLine]) -> dict[str, int]:
    """Total quantity ordered per product, in order of first appearance."""
    units: dict[str, int] = {}
    for line in lines:
        units[line.product_id] = units.get(line.product_id, 0) + line.quantity
    return units


class InventoryReservationService(EventSubscriber):
    """
    Reserves stock for paid orders and releases it for cancelled ones.

    Lines for the same product are reserved as one quantity. Reservations are
    keyed by (product_id, order_id) in the ledger, so redelivering
    PaymentSucceeded never decrements stock twice.
    """

    def __init__(
        self,
        bus: EventBus,
        stock: StockLedger,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._bus = bus
        self._stock = stock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [PaymentSucceeded, CancellationRequested]

    async def handle(self, event: DomainEvent) -> None:
        with self._tracer.span(
            "checkoutsaga.inventory.handle",
            {
                ATTR_ORDER_ID: str(event.order_id),
                ATTR_EVENT_ID: str(event.event_id),
            },
        ):
            if isinstance(event, PaymentSucceeded):
                await self._reserve(event)
            elif isinstance(event, CancellationRequested):
                await self._release(event)

    async def _reserve(self, event: PaymentSucceeded) -> None:
        order_id = event.order_id
        for product_id, quantity in units_per_product(event.snapshot.lines).items():
            try:
                reserved = await self._stock.reserve(product_id, order_id, quantity)
            except InsufficientStockError as e:
                logger.warning(
                    "Insufficient stock for %s on paid order %s: requested %d, available %d",
                    e.product_id,
                    order_id,
                    e.requested,
                    e.available,
                    extra={
                        "order_id": str(order_id),
                        "product_id": e.product_id,
                        "requested": e.requested,
                        "available": e.available,
                    },
                )
                await self._report_shortfall(event, e)
                continue

            if reserved:
                logger.debug(
                    "Reserved %d x %s for order %s",
                    quantity,
                    product_id,
                    order_id,
                    extra={"order_id": str(order_id), "product_id": product_id},
                )

    async def _report_shortfall(
        self, event: PaymentSucceeded, error: InsufficientStockError
    ) -> None:
        # Marked only once published, so a failed publish is reported on redelivery
        if await self._stock.shortfall_reported(error.product_id, event.order_id):
            return
        shortfall = InventoryShortfall(
            order_id=event.order_id,
            product_id=error.product_id,
            requested=error.requested,
            available=error.available,
        ).with_causation(event)
        await self._bus.publish([shortfall])
        await self._stock.mark_shortfall(error.product_id, event.order_id)

    async def _release(self, event: CancellationRequested) -> None:
        released = await self._stock.release_order(event.order_id)
        if released:
            logger.info(
                "Released %d reservation(s) for cancelled order %s",
                len(released),
                event.order_id,
                extra={"order_id": str(event.order_id), "reason": event.reason},
            )


__all__ = ["InventoryReservationService", "units_per_product"]
