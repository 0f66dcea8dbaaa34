"""Out-of-band reporting of failed payments."""

import logging

from checkoutsaga.collaborators import NotificationRequest, NotificationService
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import PaymentFailed
from checkoutsaga.protocols import EventSubscriber
from checkoutsaga.repositories.idempotency import IdempotencyStore

logger = logging.getLogger(__name__)

PAYMENT_FAILED_TEMPLATE = "payment_failed"


class PaymentFailureNotifier(EventSubscriber):
    """Sends one payment_failed notification per PaymentFailed event."""

    def __init__(self, notifications: NotificationService, idempotency: IdempotencyStore) -> None:
        self._notifications = notifications
        self._idempotency = idempotency

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [PaymentFailed]

    async def handle(self, event: DomainEvent) -> None:
        if not isinstance(event, PaymentFailed):
            return

        key = f"notification:{PAYMENT_FAILED_TEMPLATE}:{event.event_id}"
        if not await self._idempotency.claim(key):
            return

        sent = False
        try:
            await self._notifications.send(
                NotificationRequest(
                    user_id=event.snapshot.user_id,
                    order_id=event.order_id,
                    template=PAYMENT_FAILED_TEMPLATE,
                    context={
                        "reason": event.reason,
                        "attempt_number": event.attempt_number,
                        "total_cents": event.snapshot.total_cents,
                    },
                )
            )
            sent = True
            logger.info(
                "Notified user %s that payment for order %s failed: %s",
                event.snapshot.user_id,
                event.order_id,
                event.reason,
                extra={"order_id": str(event.order_id), "event_id": str(event.event_id)},
            )
        finally:
            if not sent:
                await self._idempotency.release(key)


__all__ = ["PAYMENT_FAILED_TEMPLATE", "PaymentFailureNotifier"]
