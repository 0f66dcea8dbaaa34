"""
Cooperative cancellation signals.

Cancelling an order commits the Cancelled status and publishes
CancellationRequested. Handlers that are about to start slow work (such as
a gateway charge) check these signals as well as the order status, so they
can skip work for an order the customer has abandoned.
"""

import logging
from uuid import UUID

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import CancellationRequested
from checkoutsaga.protocols import EventSubscriber

logger = logging.getLogger(__name__)


class CancellationSignals(EventSubscriber):
    """Remembers which orders asked to be cancelled."""

    def __init__(self) -> None:
        self._requested: dict[UUID, str] = {}

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [CancellationRequested]

    async def handle(self, event: DomainEvent) -> None:
        if isinstance(event, CancellationRequested):
            self.request(event.order_id, event.reason)

    def request(self, order_id: UUID, reason: str) -> None:
        if order_id not in self._requested:
            logger.debug(
                "Cancellation requested for order %s",
                order_id,
                extra={"order_id": str(order_id), "reason": reason},
            )
        self._requested.setdefault(order_id, reason)

    def is_requested(self, order_id: UUID) -> bool:
        return order_id in self._requested

    def reason_for(self, order_id: UUID) -> str | None:
        return self._requested.get(order_id)


__all__ = ["CancellationSignals"]
