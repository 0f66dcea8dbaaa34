"""
Unit tests for the saga steps downstream of payment: inventory, fulfillment,
shipment, failure notification and cancellation signals.
"""

from collections.abc import Callable, Sequence
from uuid import uuid4

import pytest

from checkoutsaga.aggregates.order import Order, OrderStatus
from checkoutsaga.aggregates.repository import OrderRepository
from checkoutsaga.bus.memory import InMemoryEventBus
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import (
    CancellationRequested,
    InventoryShortfall,
    PaymentFailed,
    PaymentSucceeded,
)
from checkoutsaga.exceptions import EventBusError
from checkoutsaga.repositories.idempotency import InMemoryIdempotencyStore
from checkoutsaga.repositories.stock import InMemoryStockLedger
from checkoutsaga.saga import (
    ORDER_FULFILLED_TEMPLATE,
    PAYMENT_FAILED_TEMPLATE,
    CancellationSignals,
    FulfillmentHandler,
    InventoryReservationService,
    PaymentFailureNotifier,
    ShipmentTriggerHandler,
)
from checkoutsaga.testing import (
    EventAssertions,
    RecordingNotificationService,
    RecordingShipmentService,
)


def payment_succeeded(order: Order) -> PaymentSucceeded:
    return PaymentSucceeded(order_id=order.order_id, snapshot=order.snapshot(), charge_id="ch_7")


def payment_failed(order: Order, reason: str = "card_declined", n: int = 1) -> PaymentFailed:
    return PaymentFailed(
        order_id=order.order_id, snapshot=order.snapshot(), reason=reason, attempt_number=n
    )


class RefusingBus(InMemoryEventBus):
    """Bus whose publish fails until ``refuse`` is cleared."""

    def __init__(self) -> None:
        super().__init__(enable_tracing=False)
        self.refuse = True

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        if self.refuse:
            raise EventBusError("bus unavailable")
        await super().publish(events)


@pytest.fixture
def idempotency() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def notifications() -> RecordingNotificationService:
    return RecordingNotificationService()


# =============================================================================
# Inventory
# =============================================================================


class TestInventoryReservationService:
    """Tests for reserving and releasing stock."""

    @pytest.mark.asyncio
    async def test_reserves_every_line(
        self, bus: InMemoryEventBus, order_factory: Callable[..., Order]
    ) -> None:
        stock = InMemoryStockLedger({"A": 10, "B": 10}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)
        order = order_factory([("A", 500, 2), ("B", 100, 3)])

        await service.handle(payment_succeeded(order))

        assert await stock.available("A") == 8
        assert await stock.available("B") == 7

    @pytest.mark.asyncio
    async def test_redelivery_reserves_once(
        self, bus: InMemoryEventBus, order_factory: Callable[..., Order]
    ) -> None:
        stock = InMemoryStockLedger({"A": 10}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)
        event = payment_succeeded(order_factory())

        await service.handle(event)
        await service.handle(event)

        assert await stock.available("A") == 8

    @pytest.mark.asyncio
    async def test_shortfall_published_once_and_other_lines_reserved(
        self, bus: InMemoryEventBus, order_factory: Callable[..., Order]
    ) -> None:
        stock = InMemoryStockLedger({"A": 1, "B": 5}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)
        event = payment_succeeded(order_factory([("A", 500, 2), ("B", 100, 1)]))

        await service.handle(event)
        await service.handle(event)

        assert await stock.available("A") == 1
        assert await stock.available("B") == 4
        assertions = EventAssertions(bus.published_events)
        shortfall = assertions.assert_event_published(
            InventoryShortfall, product_id="A", requested=2, available=1
        )
        assert shortfall.is_caused_by(event)
        assertions.assert_event_count(1, InventoryShortfall)

    @pytest.mark.asyncio
    async def test_lines_for_same_product_are_reserved_together(
        self, bus: InMemoryEventBus, order_factory: Callable[..., Order]
    ) -> None:
        stock = InMemoryStockLedger({"A": 10}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)
        order = order_factory([("A", 500, 2), ("A", 500, 3)])

        await service.handle(payment_succeeded(order))

        assert await stock.available("A") == 5
        [reservation] = await stock.reservations_for(order.order_id)
        assert reservation.quantity == 5

    @pytest.mark.asyncio
    async def test_shortfall_counts_every_line_of_a_product(
        self, bus: InMemoryEventBus, order_factory: Callable[..., Order]
    ) -> None:
        stock = InMemoryStockLedger({"A": 4}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)

        await service.handle(payment_succeeded(order_factory([("A", 500, 2), ("A", 500, 3)])))

        EventAssertions(bus.published_events).assert_event_published(
            InventoryShortfall, product_id="A", requested=5, available=4
        )
        assert await stock.available("A") == 4

    @pytest.mark.asyncio
    async def test_shortfall_reported_after_failed_publish(
        self, order_factory: Callable[..., Order]
    ) -> None:
        bus = RefusingBus()
        stock = InMemoryStockLedger({"A": 1}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)
        order = order_factory()
        event = payment_succeeded(order)

        with pytest.raises(EventBusError):
            await service.handle(event)
        assert not await stock.shortfall_reported("A", order.order_id)

        bus.refuse = False
        await service.handle(event)
        await service.handle(event)

        EventAssertions(bus.published_events).assert_event_count(1, InventoryShortfall)
        assert await stock.shortfall_reported("A", order.order_id)

    @pytest.mark.asyncio
    async def test_cancellation_releases_reservations(
        self, bus: InMemoryEventBus, order_factory: Callable[..., Order]
    ) -> None:
        stock = InMemoryStockLedger({"A": 10}, enable_tracing=False)
        service = InventoryReservationService(bus, stock, enable_tracing=False)
        order = order_factory()
        await service.handle(payment_succeeded(order))

        await service.handle(CancellationRequested(order_id=order.order_id, reason="fraud"))

        assert await stock.available("A") == 10

    @pytest.mark.asyncio
    async def test_subscriptions(self, bus: InMemoryEventBus) -> None:
        service = InventoryReservationService(bus, InMemoryStockLedger(), enable_tracing=False)

        assert service.subscribed_to() == [PaymentSucceeded, CancellationRequested]


# =============================================================================
# Fulfillment
# =============================================================================


async def paid_order(repository: OrderRepository, order_factory: Callable[..., Order]) -> Order:
    order = order_factory()
    order.mark_payment_pending()
    order.mark_paid()
    await repository.save(order)
    return order


class TestFulfillmentHandler:
    """Tests for fulfilling paid orders and the order_fulfilled message."""

    @pytest.fixture
    def handler(
        self,
        repository: OrderRepository,
        notifications: RecordingNotificationService,
        idempotency: InMemoryIdempotencyStore,
    ) -> FulfillmentHandler:
        return FulfillmentHandler(repository, notifications, idempotency, enable_tracing=False)

    @pytest.mark.asyncio
    async def test_fulfils_and_notifies(
        self,
        handler: FulfillmentHandler,
        repository: OrderRepository,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = await paid_order(repository, order_factory)

        await handler.handle(payment_succeeded(order))

        assert (await repository.load(order.order_id)).status == OrderStatus.FULFILLED
        [message] = notifications.sent
        assert message.template == ORDER_FULFILLED_TEMPLATE
        assert message.user_id == "user-1"
        assert message.context == {"total_cents": 1000, "charge_id": "ch_7"}

    @pytest.mark.asyncio
    async def test_redelivery_notifies_once(
        self,
        handler: FulfillmentHandler,
        repository: OrderRepository,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = await paid_order(repository, order_factory)
        event = payment_succeeded(order)

        await handler.handle(event)
        await handler.handle(event)

        assert notifications.templates_for(order.order_id) == [ORDER_FULFILLED_TEMPLATE]
        assert (await repository.load(order.order_id)).version == 2

    @pytest.mark.asyncio
    async def test_failed_notification_is_retried_on_redelivery(
        self,
        handler: FulfillmentHandler,
        repository: OrderRepository,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = await paid_order(repository, order_factory)
        event = payment_succeeded(order)
        notifications.fail_times(1)

        with pytest.raises(ConnectionError):
            await handler.handle(event)
        assert (await repository.load(order.order_id)).status == OrderStatus.FULFILLED

        await handler.handle(event)

        assert notifications.templates_for(order.order_id) == [ORDER_FULFILLED_TEMPLATE]

    @pytest.mark.asyncio
    async def test_unpaid_order_is_left_alone(
        self,
        handler: FulfillmentHandler,
        repository: OrderRepository,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = order_factory()
        order.cancel()
        await repository.save(order)

        await handler.handle(payment_succeeded(order))

        assert (await repository.load(order.order_id)).status == OrderStatus.CANCELLED
        assert notifications.sent == []


# =============================================================================
# Shipment
# =============================================================================


class TestShipmentTriggerHandler:
    """Tests for requesting shipments."""

    @pytest.fixture
    def shipments(self) -> RecordingShipmentService:
        return RecordingShipmentService()

    @pytest.fixture
    def handler(
        self, shipments: RecordingShipmentService, idempotency: InMemoryIdempotencyStore
    ) -> ShipmentTriggerHandler:
        return ShipmentTriggerHandler(shipments, idempotency, enable_tracing=False)

    @pytest.mark.asyncio
    async def test_requests_shipment_for_order(
        self,
        handler: ShipmentTriggerHandler,
        shipments: RecordingShipmentService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = order_factory([("A", 500, 2), ("B", 100, 1)])

        await handler.handle(payment_succeeded(order))

        [request] = shipments.shipments_for(order.order_id)
        assert request.idempotency_key == str(order.order_id)
        assert request.user_id == "user-1"
        assert [(ln.product_id, ln.quantity) for ln in request.lines] == [("A", 2), ("B", 1)]

    @pytest.mark.asyncio
    async def test_redelivery_requests_once(
        self,
        handler: ShipmentTriggerHandler,
        shipments: RecordingShipmentService,
        order_factory: Callable[..., Order],
    ) -> None:
        event = payment_succeeded(order_factory())

        await handler.handle(event)
        await handler.handle(event)

        assert len(shipments.requests) == 1

    @pytest.mark.asyncio
    async def test_rejected_request_is_retried(
        self,
        handler: ShipmentTriggerHandler,
        shipments: RecordingShipmentService,
        idempotency: InMemoryIdempotencyStore,
        order_factory: Callable[..., Order],
    ) -> None:
        order = order_factory()
        event = payment_succeeded(order)
        shipments.fail_times(1)

        with pytest.raises(ConnectionError):
            await handler.handle(event)
        assert not await idempotency.contains(f"shipment:{order.order_id}")

        await handler.handle(event)

        assert len(shipments.requests) == 2
        assert len(shipments.shipments_for(order.order_id)) == 1


# =============================================================================
# Payment failure notifications
# =============================================================================


class TestPaymentFailureNotifier:
    @pytest.fixture
    def notifier(
        self,
        notifications: RecordingNotificationService,
        idempotency: InMemoryIdempotencyStore,
    ) -> PaymentFailureNotifier:
        return PaymentFailureNotifier(notifications, idempotency)

    @pytest.mark.asyncio
    async def test_sends_payment_failed_message(
        self,
        notifier: PaymentFailureNotifier,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = order_factory()

        await notifier.handle(payment_failed(order, "timeout"))

        [message] = notifications.sent
        assert message.template == PAYMENT_FAILED_TEMPLATE
        assert message.order_id == order.order_id
        assert message.context == {"reason": "timeout", "attempt_number": 1, "total_cents": 1000}

    @pytest.mark.asyncio
    async def test_one_message_per_failure_event(
        self,
        notifier: PaymentFailureNotifier,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        order = order_factory()
        first = payment_failed(order)

        await notifier.handle(first)
        await notifier.handle(first)
        await notifier.handle(payment_failed(order, n=2))

        assert notifications.templates_for(order.order_id) == [PAYMENT_FAILED_TEMPLATE] * 2

    @pytest.mark.asyncio
    async def test_send_failure_releases_claim(
        self,
        notifier: PaymentFailureNotifier,
        notifications: RecordingNotificationService,
        order_factory: Callable[..., Order],
    ) -> None:
        event = payment_failed(order_factory())
        notifications.fail_times(1)

        with pytest.raises(ConnectionError):
            await notifier.handle(event)
        await notifier.handle(event)

        assert len(notifications.sent) == 1


# =============================================================================
# Cancellation signals
# =============================================================================


class TestCancellationSignals:
    @pytest.mark.asyncio
    async def test_records_first_reason(self) -> None:
        signals = CancellationSignals()
        order_id = uuid4()

        await signals.handle(CancellationRequested(order_id=order_id, reason="fraud"))
        signals.request(order_id, "customer_request")

        assert signals.is_requested(order_id)
        assert signals.reason_for(order_id) == "fraud"
        assert not signals.is_requested(uuid4())
        assert signals.reason_for(uuid4()) is None
