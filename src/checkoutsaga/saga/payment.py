"""
Payment step of the checkout saga.

PaymentSagaHandler reacts to OrderPlaced and PaymentRetryRequested by
charging the order total once and publishing exactly one PaymentSucceeded or
PaymentFailed per triggering event.

Per delivery:

1. If an attempt was already recorded for the triggering event, the charge
   happened before: apply its outcome if it is the order's latest attempt and
   its outcome event was never committed, otherwise do nothing.
2. If the order was already paid, do nothing.
3. If the order was cancelled, do nothing.
4. Move the order to PaymentPending and charge the gateway under a deadline.
   A missed deadline is a failure with reason "timeout".
5. Record the attempt, then commit Paid or PaymentFailed together with the
   outcome event and publish it.

The handler never retries the gateway itself. Gateway errors propagate so the
bus redelivers; once the bus gives up and publishes HandlerExhausted for this
handler, the charge is recorded as failed with reason "gateway_error". If a
charge succeeds for an order that was cancelled meanwhile,
PaymentRefundRequired is published.
"""

import asyncio
import logging
from uuid import UUID

from checkoutsaga.aggregates.order import Order, OrderStatus
from checkoutsaga.aggregates.repository import OrderRepository
from checkoutsaga.bus.interface import EventBus
from checkoutsaga.collaborators import ChargeFailed, ChargeResult, ChargeSucceeded, PaymentGateway
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import (
    HandlerExhausted,
    OrderPlaced,
    PaymentFailed,
    PaymentRefundRequired,
    PaymentRetryRequested,
    PaymentSucceeded,
)
from checkoutsaga.handlers.adapter import get_handler_name
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_AMOUNT_CENTS,
    ATTR_ATTEMPT,
    ATTR_EVENT_ID,
    ATTR_GATEWAY_ID,
    ATTR_ORDER_ID,
)
from checkoutsaga.protocols import EventSubscriber
from checkoutsaga.repositories.payments import PaymentAttempt, PaymentAttemptLedger, PaymentOutcome
from checkoutsaga.saga.cancellation import CancellationSignals

logger = logging.getLogger(__name__)

PaymentTrigger = OrderPlaced | PaymentRetryRequested

TIMEOUT_REASON = "timeout"
GATEWAY_ERROR_REASON = "gateway_error"

# Statuses from which each trigger may start a charge
_CHARGEABLE_FROM: dict[type[DomainEvent], frozenset[OrderStatus]] = {
    OrderPlaced: frozenset({OrderStatus.PLACED, OrderStatus.PAYMENT_PENDING}),
    PaymentRetryRequested: frozenset({OrderStatus.PAYMENT_FAILED, OrderStatus.PAYMENT_PENDING}),
}

_TRIGGERS_BY_NAME = {t.__name__: t for t in _CHARGEABLE_FROM}


def idempotency_key_for(order_id: UUID, attempt_number: int) -> str:
    """Gateway idempotency key: the order id, suffixed with the attempt number on retries."""
    if attempt_number <= 1:
        return str(order_id)
    return f"{order_id}:{attempt_number}"


class PaymentSagaHandler(EventSubscriber):
    """
    Charges placed orders and publishes the payment outcome.

    Example:
        >>> handler = PaymentSagaHandler(bus, repository, gateway, ledger, signals)
        >>> bus.subscribe_all(handler)
    """

    def __init__(
        self,
        bus: EventBus,
        repository: OrderRepository,
        gateway: PaymentGateway,
        ledger: PaymentAttemptLedger,
        signals: CancellationSignals,
        *,
        gateway_timeout: float = 10.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if gateway_timeout <= 0:
            raise ValueError(f"gateway_timeout must be positive, got {gateway_timeout}")
        self._bus = bus
        self._repository = repository
        self._gateway = gateway
        self._ledger = ledger
        self._signals = signals
        self._gateway_timeout = gateway_timeout
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._name = get_handler_name(self)

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [OrderPlaced, PaymentRetryRequested, HandlerExhausted]

    async def handle(self, event: DomainEvent) -> None:
        if isinstance(event, OrderPlaced | PaymentRetryRequested):
            with self._tracer.span(
                "checkoutsaga.payment.handle",
                {
                    ATTR_ORDER_ID: str(event.order_id),
                    ATTR_EVENT_ID: str(event.event_id),
                    ATTR_GATEWAY_ID: self._gateway.gateway_id,
                },
            ):
                await self._process(event)
        elif isinstance(event, HandlerExhausted) and event.handler_name == self._name:
            await self._fail_exhausted(event)

    async def _process(self, trigger: PaymentTrigger) -> None:
        order_id = trigger.order_id

        recorded = await self._ledger.get_by_trigger(trigger.event_id)
        if recorded is not None:
            logger.debug(
                "Resuming payment for order %s from recorded attempt %d",
                order_id,
                recorded.attempt_number,
                extra={"order_id": str(order_id), "event_id": str(trigger.event_id)},
            )
            if not await self._is_latest(recorded):
                logger.debug(
                    "Attempt %d for order %s was superseded by a later attempt",
                    recorded.attempt_number,
                    order_id,
                    extra={"order_id": str(order_id), "attempt": recorded.attempt_number},
                )
                return
            await self._complete(order_id, trigger, recorded)
            return

        if await self._ledger.has_succeeded(order_id):
            logger.debug(
                "Order %s already paid, ignoring %s",
                order_id,
                trigger.event_type,
                extra={"order_id": str(order_id), "event_id": str(trigger.event_id)},
            )
            return

        if self._signals.is_requested(order_id):
            logger.info(
                "Order %s was cancelled, not charging",
                order_id,
                extra={"order_id": str(order_id)},
            )
            return

        order = await self._repository.retry_on_conflict(
            lambda: self._mark_pending(order_id, type(trigger))
        )
        if order is None:
            return

        if isinstance(trigger, OrderPlaced):
            attempt_number = 1
        else:
            attempt_number = await self._ledger.next_attempt_number(order_id)

        result = await self._charge(order, trigger.payment_token, attempt_number)
        attempt = await self._ledger.record(
            PaymentAttempt(
                order_id=order_id,
                gateway_id=self._gateway.gateway_id,
                amount_cents=order.total_cents,
                outcome=(
                    PaymentOutcome.SUCCEEDED
                    if isinstance(result, ChargeSucceeded)
                    else PaymentOutcome.FAILED
                ),
                trigger_event_id=trigger.event_id,
                attempt_number=attempt_number,
                failure_reason=result.reason if isinstance(result, ChargeFailed) else None,
                charge_id=result.charge_id if isinstance(result, ChargeSucceeded) else None,
            )
        )
        await self._complete(order_id, trigger, attempt)

    async def _fail_exhausted(self, exhausted: HandlerExhausted) -> None:
        """Record a charge the bus gave up on as failed, so the order is not left pending."""
        trigger_type = _TRIGGERS_BY_NAME.get(exhausted.failed_event_type)
        if trigger_type is None:
            return
        order_id = exhausted.order_id

        if await self._ledger.get_by_trigger(exhausted.failed_event_id) is not None:
            # The charge concluded; redelivering the trigger completes it
            return

        order = await self._repository.load(order_id)
        if order.status is not OrderStatus.PAYMENT_PENDING:
            return

        if trigger_type is OrderPlaced:
            attempt_number = 1
        else:
            attempt_number = await self._ledger.next_attempt_number(order_id)

        logger.warning(
            "Payment for order %s abandoned after %d delivery attempt(s): %s",
            order_id,
            exhausted.attempts,
            exhausted.error,
            extra={"order_id": str(order_id), "event_id": str(exhausted.failed_event_id)},
        )
        attempt = await self._ledger.record(
            PaymentAttempt(
                order_id=order_id,
                gateway_id=self._gateway.gateway_id,
                amount_cents=order.total_cents,
                outcome=PaymentOutcome.FAILED,
                trigger_event_id=exhausted.failed_event_id,
                attempt_number=attempt_number,
                failure_reason=GATEWAY_ERROR_REASON,
            )
        )
        await self._complete(order_id, exhausted, attempt)

    async def _is_latest(self, attempt: PaymentAttempt) -> bool:
        latest = await self._ledger.next_attempt_number(attempt.order_id) - 1
        return attempt.attempt_number == latest

    async def _outcome_committed(self, attempt: PaymentAttempt) -> bool:
        logged = await self._repository.store.event_log.events_for_order(attempt.order_id)
        return any(
            isinstance(s.event, PaymentSucceeded | PaymentFailed)
            and s.event.attempt_number == attempt.attempt_number
            for s in logged
        )

    async def _mark_pending(
        self, order_id: UUID, trigger_type: type[DomainEvent]
    ) -> Order | None:
        order = await self._repository.load(order_id)
        if order.status not in _CHARGEABLE_FROM[trigger_type]:
            logger.debug(
                "Order %s is %s, not charging on %s",
                order_id,
                order.status.value,
                trigger_type.__name__,
                extra={"order_id": str(order_id), "status": order.status.value},
            )
            return None
        if order.status is not OrderStatus.PAYMENT_PENDING:
            order.mark_payment_pending()
            await self._repository.save(order)
        return order

    async def _charge(self, order: Order, token: str, attempt_number: int) -> ChargeResult:
        key = idempotency_key_for(order.order_id, attempt_number)
        with self._tracer.span(
            "checkoutsaga.payment.charge",
            {
                ATTR_ORDER_ID: str(order.order_id),
                ATTR_AMOUNT_CENTS: order.total_cents,
                ATTR_GATEWAY_ID: self._gateway.gateway_id,
                ATTR_ATTEMPT: attempt_number,
            },
        ):
            try:
                return await asyncio.wait_for(
                    self._gateway.charge(token, order.total_cents, key),
                    self._gateway_timeout,
                )
            except TimeoutError:
                logger.warning(
                    "Gateway %s did not answer within %.1fs for order %s",
                    self._gateway.gateway_id,
                    self._gateway_timeout,
                    order.order_id,
                    extra={"order_id": str(order.order_id), "attempt": attempt_number},
                )
                return ChargeFailed(reason=TIMEOUT_REASON)

    async def _complete(self, order_id: UUID, cause: DomainEvent, attempt: PaymentAttempt) -> None:
        """Apply a recorded attempt to the order and publish its outcome."""

        async def apply() -> tuple[Order, DomainEvent | None]:
            order = await self._repository.load(order_id)
            if order.status is not OrderStatus.PAYMENT_PENDING:
                return order, None
            if await self._outcome_committed(attempt):
                return order, None

            outcome: DomainEvent
            if attempt.succeeded:
                order.mark_paid()
                outcome = PaymentSucceeded(
                    order_id=order.order_id,
                    snapshot=order.snapshot(),
                    charge_id=attempt.charge_id or "",
                    attempt_number=attempt.attempt_number,
                ).with_causation(cause)
            else:
                reason = attempt.failure_reason or "unknown"
                order.mark_payment_failed(reason)
                outcome = PaymentFailed(
                    order_id=order.order_id,
                    snapshot=order.snapshot(),
                    reason=reason,
                    attempt_number=attempt.attempt_number,
                ).with_causation(cause)
            await self._repository.save(order, [outcome])
            return order, outcome

        order, outcome = await self._repository.retry_on_conflict(apply)

        if outcome is not None:
            await self._bus.publish([outcome])
            logger.info(
                "Payment %s for order %s (attempt %d)",
                "succeeded" if attempt.succeeded else f"failed: {attempt.failure_reason}",
                order.order_id,
                attempt.attempt_number,
                extra={
                    "order_id": str(order.order_id),
                    "event_id": str(outcome.event_id),
                    "attempt": attempt.attempt_number,
                },
            )
            return

        if order.status is OrderStatus.CANCELLED and attempt.succeeded:
            await self._require_refund(order, cause, attempt)
        else:
            logger.debug(
                "Order %s is %s, attempt %d already applied",
                order.order_id,
                order.status.value,
                attempt.attempt_number,
                extra={"order_id": str(order.order_id), "status": order.status.value},
            )

    async def _require_refund(
        self,
        order: Order,
        cause: DomainEvent,
        attempt: PaymentAttempt,
    ) -> None:
        charge_id = attempt.charge_id or ""
        logged = await self._repository.store.event_log.events_for_order(order.order_id)
        if any(
            isinstance(s.event, PaymentRefundRequired) and s.event.charge_id == charge_id
            for s in logged
        ):
            return

        refund = PaymentRefundRequired(
            order_id=order.order_id,
            charge_id=charge_id,
            amount_cents=attempt.amount_cents,
        ).with_causation(cause)
        await self._repository.save(order, [refund])
        await self._bus.publish([refund])
        logger.warning(
            "Order %s was cancelled while charge %s was in flight, refund required",
            order.order_id,
            charge_id,
            extra={"order_id": str(order.order_id), "event_id": str(refund.event_id)},
        )


__all__ = [
    "PaymentSagaHandler",
    "PaymentTrigger",
    "GATEWAY_ERROR_REASON",
    "TIMEOUT_REASON",
    "idempotency_key_for",
]
