"""
End-to-end checkout scenarios through a fully wired saga.

Every test drives the public entry points (checkout, cancel, retry_payment)
and waits for the bus to settle before asserting on orders, stock, the fake
collaborators and the published events.
"""

import asyncio

import pytest

from checkoutsaga.aggregates.order import OrderStatus
from checkoutsaga.events.saga import (
    CancellationRequested,
    HandlerExhausted,
    InventoryShortfall,
    OrderPlaced,
    PaymentFailed,
    PaymentRefundRequired,
    PaymentRetryRequested,
    PaymentSucceeded,
)
from checkoutsaga.exceptions import EmptyCartError, InvalidTransitionError
from checkoutsaga.saga import CartItem
from checkoutsaga.testing import SagaTestHarness

pytestmark = pytest.mark.integration

CART = [CartItem("A", 500, 2)]


async def wait_for_charge(harness: SagaTestHarness, calls: int = 1) -> None:
    async def poll() -> None:
        while harness.gateway.call_count < calls:
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=1.0)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_order_is_paid_reserved_shipped_and_fulfilled(
        self, harness: SagaTestHarness
    ) -> None:
        result = await harness.checkout(CART)
        assert result.status == OrderStatus.PLACED

        await harness.settle()

        order_id = result.order_id
        assert await harness.saga.get_status(order_id) == OrderStatus.FULFILLED
        assert await harness.stock.available("A") == 8
        assert len(harness.shipments.shipments_for(order_id)) == 1
        assert harness.notifications.templates_for(order_id) == ["order_fulfilled"]
        assert len(harness.gateway.captures) == 1
        assert harness.gateway.captures[0].amount_cents == 1000
        harness.assertions.assert_event_sequence([OrderPlaced, PaymentSucceeded], order_id)
        harness.assertions.assert_no_event(HandlerExhausted)

    @pytest.mark.asyncio
    async def test_events_of_one_checkout_share_correlation(
        self, harness: SagaTestHarness
    ) -> None:
        result = await harness.checkout(CART)
        await harness.settle()

        placed = harness.assertions.assert_event_published(OrderPlaced, result.order_id)
        succeeded = harness.assertions.assert_event_published(PaymentSucceeded, result.order_id)
        assert succeeded.is_caused_by(placed)
        assert succeeded.is_correlated_with(placed)

    @pytest.mark.asyncio
    async def test_concurrent_checkouts_never_oversell(self, harness: SagaTestHarness) -> None:
        results = await asyncio.gather(*(harness.checkout(CART) for _ in range(6)))
        await harness.settle()

        statuses = [await harness.saga.get_status(r.order_id) for r in results]
        assert statuses == [OrderStatus.FULFILLED] * 6
        assert await harness.stock.available("A") == 0
        harness.assertions.assert_event_count(1, InventoryShortfall)

    @pytest.mark.asyncio
    async def test_invalid_checkout_publishes_nothing(self, harness: SagaTestHarness) -> None:
        with pytest.raises(EmptyCartError):
            await harness.checkout([])

        assert harness.published_events == []


class TestPaymentFailures:
    """Declines and gateway timeouts."""

    @pytest.mark.asyncio
    async def test_declined_card(self, harness: SagaTestHarness) -> None:
        harness.gateway.fail("card_declined")

        result = await harness.checkout(CART)
        await harness.settle()

        order_id = result.order_id
        assert await harness.saga.get_status(order_id) == OrderStatus.PAYMENT_FAILED
        order = await harness.saga.repository.load(order_id)
        assert order.failure_reason == "card_declined"
        harness.assertions.assert_event_published(PaymentFailed, order_id, reason="card_declined")
        assert await harness.stock.available("A") == 10
        assert harness.shipments.requests == []
        assert harness.notifications.templates_for(order_id) == ["payment_failed"]

    @pytest.mark.asyncio
    async def test_gateway_timeout_fails_payment(self, harness: SagaTestHarness) -> None:
        harness.gateway.delay(0.5)

        result = await harness.checkout(CART)
        await harness.settle()

        assert await harness.saga.get_status(result.order_id) == OrderStatus.PAYMENT_FAILED
        harness.assertions.assert_event_published(PaymentFailed, result.order_id, reason="timeout")
        harness.assertions.assert_no_event(PaymentSucceeded)

    @pytest.mark.asyncio
    async def test_transient_gateway_error_is_retried_by_the_bus(
        self, harness: SagaTestHarness
    ) -> None:
        harness.gateway.raise_error(ConnectionError("gateway unreachable"), times=2)

        result = await harness.checkout(CART)
        await harness.settle()

        assert await harness.saga.get_status(result.order_id) == OrderStatus.FULFILLED
        assert harness.gateway.call_count == 3
        assert len(harness.gateway.captures) == 1


    @pytest.mark.asyncio
    async def test_gateway_that_keeps_erroring_fails_payment(
        self, harness: SagaTestHarness
    ) -> None:
        harness.gateway.raise_error(ConnectionError("gateway unreachable"), times=4)

        result = await harness.checkout(CART)
        await harness.settle()

        order_id = result.order_id
        assert await harness.saga.get_status(order_id) == OrderStatus.PAYMENT_FAILED
        harness.assertions.assert_event_published(
            PaymentFailed, order_id, reason="gateway_error", attempt_number=1
        )
        harness.assertions.assert_event_published(
            HandlerExhausted, order_id, handler_name="PaymentSagaHandler"
        )
        assert harness.notifications.templates_for(order_id) == ["payment_failed"]
        assert harness.gateway.call_count == 4

        await harness.saga.retry_payment(order_id, "tok_second_card")
        await harness.settle()

        assert await harness.saga.get_status(order_id) == OrderStatus.FULFILLED
        assert harness.gateway.calls[-1].idempotency_key == f"{order_id}:2"


class TestRetryPayment:
    @pytest.mark.asyncio
    async def test_retry_after_decline_fulfils_order(self, harness: SagaTestHarness) -> None:
        harness.gateway.fail("card_declined")
        result = await harness.checkout(CART)
        await harness.settle()
        harness.gateway.succeed()

        await harness.saga.retry_payment(result.order_id, "tok_second_card")
        await harness.settle()

        order_id = result.order_id
        assert await harness.saga.get_status(order_id) == OrderStatus.FULFILLED
        assert harness.gateway.calls[-1].idempotency_key == f"{order_id}:2"
        assert harness.gateway.calls[-1].token == "tok_second_card"
        harness.assertions.assert_event_sequence(
            [OrderPlaced, PaymentFailed, PaymentRetryRequested, PaymentSucceeded], order_id
        )
        assert await harness.stock.available("A") == 8
        assert harness.notifications.templates_for(order_id) == [
            "payment_failed",
            "order_fulfilled",
        ]


class TestDuplicateDelivery:
    """Redelivered events never repeat side effects."""

    @pytest.mark.asyncio
    async def test_redelivered_order_placed_charges_once(self, harness: SagaTestHarness) -> None:
        result = await harness.checkout(CART)
        await harness.settle()
        placed = harness.assertions.assert_event_published(OrderPlaced, result.order_id)

        assert harness.bus.redeliver(placed) == 1
        await harness.settle()

        harness.assertions.assert_event_count(1, PaymentSucceeded, result.order_id)
        harness.assertions.assert_no_event(PaymentFailed)
        assert len(harness.gateway.captures) == 1

    @pytest.mark.asyncio
    async def test_redelivered_payment_succeeded_has_no_new_side_effects(
        self, harness: SagaTestHarness
    ) -> None:
        result = await harness.checkout(CART)
        await harness.settle()
        succeeded = harness.assertions.assert_event_published(PaymentSucceeded, result.order_id)

        harness.bus.redeliver(succeeded)
        harness.bus.redeliver(succeeded)
        await harness.settle()

        assert await harness.stock.available("A") == 8
        assert len(harness.shipments.requests) == 1
        assert harness.notifications.templates_for(result.order_id) == ["order_fulfilled"]

    @pytest.mark.asyncio
    async def test_redelivered_order_placed_after_exhausted_retry(
        self, harness: SagaTestHarness
    ) -> None:
        harness.gateway.fail("card_declined")
        result = await harness.checkout(CART)
        await harness.settle()
        harness.gateway.raise_error(ConnectionError("gateway unreachable"), times=4)
        await harness.saga.retry_payment(result.order_id, "tok_second_card")
        await harness.settle()
        placed = harness.assertions.assert_event_published(OrderPlaced, result.order_id)

        harness.bus.redeliver(placed)
        await harness.settle()

        failures = harness.assertions.of_type(PaymentFailed, result.order_id)
        assert [(f.attempt_number, f.reason) for f in failures] == [
            (1, "card_declined"),
            (2, "gateway_error"),
        ]
        assert [f for f in failures if f.is_caused_by(placed)] == failures[:1]
        assert await harness.saga.get_status(result.order_id) == OrderStatus.PAYMENT_FAILED

    @pytest.mark.asyncio
    async def test_replay_of_whole_log_is_harmless(self, harness: SagaTestHarness) -> None:
        harness.gateway.fail("card_declined")
        declined = await harness.checkout(CART)
        await harness.settle()
        harness.gateway.succeed()
        paid = await harness.checkout(CART)
        await harness.settle()

        await harness.bus.replay()
        await harness.settle()

        assert await harness.saga.get_status(declined.order_id) == OrderStatus.PAYMENT_FAILED
        assert await harness.saga.get_status(paid.order_id) == OrderStatus.FULFILLED
        assert harness.gateway.call_count == 2
        assert len(harness.shipments.requests) == 1
        assert len(harness.notifications.sent) == 2


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_failed_payment(self, harness: SagaTestHarness) -> None:
        harness.gateway.fail("card_declined")
        result = await harness.checkout(CART)
        await harness.settle()

        cancelled = await harness.saga.cancel(result.order_id, reason="gave_up")
        await harness.settle()

        assert cancelled.status == OrderStatus.CANCELLED
        assert harness.saga.signals.is_requested(result.order_id)
        harness.assertions.assert_event_published(
            CancellationRequested, result.order_id, reason="gave_up"
        )
        assert await harness.stock.available("A") == 10

    @pytest.mark.asyncio
    async def test_cannot_cancel_fulfilled_order(self, harness: SagaTestHarness) -> None:
        result = await harness.checkout(CART)
        await harness.settle()

        with pytest.raises(InvalidTransitionError):
            await harness.saga.cancel(result.order_id)

        assert await harness.saga.get_status(result.order_id) == OrderStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_cancel_during_charge_requires_refund(self, harness: SagaTestHarness) -> None:
        harness.gateway.delay(0.1)
        result = await harness.checkout(CART)
        await wait_for_charge(harness)

        await harness.saga.cancel(result.order_id)
        await harness.settle()

        order_id = result.order_id
        assert await harness.saga.get_status(order_id) == OrderStatus.CANCELLED
        harness.assertions.assert_event_published(
            PaymentRefundRequired, order_id, charge_id="ch_1", amount_cents=1000
        )
        harness.assertions.assert_no_event(PaymentSucceeded)
        assert harness.shipments.requests == []
        assert await harness.stock.available("A") == 10


class TestHandlerExhaustion:
    @pytest.mark.asyncio
    async def test_failing_shipment_service_is_dead_lettered(
        self, harness: SagaTestHarness
    ) -> None:
        harness.shipments.fail_times(4)

        result = await harness.checkout(CART)
        await harness.settle()

        assert await harness.saga.get_status(result.order_id) == OrderStatus.FULFILLED
        exhausted = harness.assertions.assert_event_published(
            HandlerExhausted, result.order_id, handler_name="ShipmentTriggerHandler"
        )
        assert exhausted.failed_event_type == "PaymentSucceeded"
        assert exhausted.attempts == 4
        [entry] = await harness.saga.dead_letters.list_entries()
        assert entry.handler_name == "ShipmentTriggerHandler"
        assert entry.order_id == result.order_id

        await harness.bus.redeliver_dead_letter(entry.id)
        await harness.settle()

        assert len(harness.shipments.shipments_for(result.order_id)) == 1
        resolved = await harness.saga.dead_letters.get_entry(entry.id)
        assert resolved is not None
        assert resolved.status == "resolved"


class TestInventoryShortfall:
    @pytest.mark.asyncio
    async def test_paid_order_without_stock_reports_shortfall(self) -> None:
        async with SagaTestHarness(stock={"A": 1}) as harness:
            result = await harness.checkout(CART)
            await harness.settle()

            assert await harness.saga.get_status(result.order_id) == OrderStatus.FULFILLED
            harness.assertions.assert_event_published(
                InventoryShortfall, result.order_id, product_id="A", requested=2, available=1
            )
            assert await harness.stock.available("A") == 1

    @pytest.mark.asyncio
    async def test_lines_for_one_product_are_reserved_in_full(
        self, harness: SagaTestHarness
    ) -> None:
        result = await harness.checkout([CartItem("A", 500, 2), CartItem("A", 500, 3)])
        await harness.settle()

        assert await harness.saga.get_status(result.order_id) == OrderStatus.FULFILLED
        assert await harness.stock.available("A") == 5
        harness.assertions.assert_no_event(InventoryShortfall)
