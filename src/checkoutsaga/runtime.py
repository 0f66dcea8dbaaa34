"""
Process-level wiring of the checkout saga.

CheckoutSaga owns one event bus and builds every saga step around it from
explicitly passed collaborators. Nothing is global: two CheckoutSaga
instances in one process are fully independent.

Example:
    >>> async with CheckoutSaga(gateway, shipments, notifications) as saga:
    ...     result = await saga.checkout(
    ...         [CartItem("A", 500, 2)], user_id="user-1", payment_token="tok_visa_4242"
    ...     )
    ...     await saga.wait_until_idle()
    ...     await saga.get_status(result.order_id)
    <OrderStatus.FULFILLED: 'Fulfilled'>
"""

import logging
from collections.abc import Iterable
from types import TracebackType
from uuid import UUID

from checkoutsaga.aggregates.order import OrderStatus
from checkoutsaga.aggregates.repository import OrderRepository
from checkoutsaga.bus.memory import InMemoryEventBus
from checkoutsaga.collaborators import NotificationService, PaymentGateway, ShipmentService
from checkoutsaga.config import SagaConfig
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.protocols import EventSubscriber
from checkoutsaga.repositories.dead_letter import DeadLetterSink, InMemoryDeadLetterSink
from checkoutsaga.repositories.idempotency import IdempotencyStore, InMemoryIdempotencyStore
from checkoutsaga.repositories.payments import InMemoryPaymentAttemptLedger, PaymentAttemptLedger
from checkoutsaga.repositories.stock import InMemoryStockLedger, StockLedger
from checkoutsaga.saga.cancellation import CancellationSignals
from checkoutsaga.saga.fulfillment import FulfillmentHandler
from checkoutsaga.saga.inventory import InventoryReservationService
from checkoutsaga.saga.notifications import PaymentFailureNotifier
from checkoutsaga.saga.orchestrator import CartItem, CheckoutOrchestrator, CheckoutResult
from checkoutsaga.saga.payment import PaymentSagaHandler
from checkoutsaga.saga.shipment import ShipmentTriggerHandler
from checkoutsaga.stores.in_memory import InMemoryOrderStore
from checkoutsaga.stores.interface import OrderStore

logger = logging.getLogger(__name__)


class CheckoutSaga:
    """
    The checkout saga with its bus, store and handlers.

    Subscriptions are registered by start(), which the async context
    manager calls. shutdown() drains pending deliveries and closes the bus.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        shipments: ShipmentService,
        notifications: NotificationService,
        *,
        store: OrderStore | None = None,
        stock: StockLedger | None = None,
        config: SagaConfig | None = None,
        dead_letters: DeadLetterSink | None = None,
        payments: PaymentAttemptLedger | None = None,
        idempotency: IdempotencyStore | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        """
        Args:
            gateway: Payment gateway to charge orders with
            shipments: Service that creates shipments for paid orders
            notifications: Service that sends customer notifications
            store: Order store (defaults to InMemoryOrderStore)
            stock: Stock ledger (defaults to an empty InMemoryStockLedger)
            config: Deadlines and redelivery policy
            dead_letters: Sink for exhausted deliveries
            payments: Ledger of payment attempts
            idempotency: Store for once-only side effects
            tracer: Tracer shared by all components; built from
                config.enable_tracing when omitted
        """
        self._config = config or SagaConfig()
        self._gateway = gateway
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)

        self._store = store if store is not None else InMemoryOrderStore(tracer=self._tracer)
        self._stock = stock if stock is not None else InMemoryStockLedger(tracer=self._tracer)
        self._payments = (
            payments if payments is not None else InMemoryPaymentAttemptLedger(tracer=self._tracer)
        )
        self._idempotency = (
            idempotency if idempotency is not None else InMemoryIdempotencyStore()
        )
        if dead_letters is None:
            dead_letters = InMemoryDeadLetterSink(tracer=self._tracer)

        self._bus = InMemoryEventBus(
            event_log=self._store.event_log,
            retry_config=self._config.retry,
            handler_timeout=self._config.handler_timeout,
            dead_letters=dead_letters,
            tracer=self._tracer,
        )
        self._repository = OrderRepository(
            self._store,
            conflict_retries=self._config.conflict_retries,
            tracer=self._tracer,
        )
        self._signals = CancellationSignals()

        self._subscribers: list[EventSubscriber] = [
            self._signals,
            PaymentSagaHandler(
                self._bus,
                self._repository,
                gateway,
                self._payments,
                self._signals,
                gateway_timeout=self._config.gateway_timeout,
                tracer=self._tracer,
            ),
            InventoryReservationService(self._bus, self._stock, tracer=self._tracer),
            FulfillmentHandler(
                self._repository, notifications, self._idempotency, tracer=self._tracer
            ),
            ShipmentTriggerHandler(shipments, self._idempotency, tracer=self._tracer),
            PaymentFailureNotifier(notifications, self._idempotency),
        ]
        self._orchestrator = CheckoutOrchestrator(self._bus, self._repository, tracer=self._tracer)
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Register every saga step with the bus. Calling it again does nothing."""
        if self._started:
            return
        for subscriber in self._subscribers:
            self._bus.subscribe_all(subscriber)
        self._started = True
        logger.info(
            "Checkout saga started with %d subscriber(s), gateway %s",
            len(self._subscribers),
            self._gateway.gateway_id,
            extra={"subscriber_count": len(self._subscribers)},
        )

    async def shutdown(self) -> None:
        """Drain pending deliveries within shutdown_timeout and close the bus."""
        await self._bus.shutdown(self._config.shutdown_timeout)
        logger.info("Checkout saga stopped")

    async def __aenter__(self) -> "CheckoutSaga":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    async def wait_until_idle(self, timeout: float | None = None) -> None:
        """Wait until every delivery triggered so far, and its follow-ups, is done."""
        await self._bus.wait_until_idle(timeout)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def checkout(
        self,
        items: Iterable[CartItem],
        user_id: str,
        payment_token: str,
    ) -> CheckoutResult:
        return await self._orchestrator.checkout(items, user_id, payment_token)

    async def cancel(self, order_id: UUID, reason: str = "customer_request") -> CheckoutResult:
        return await self._orchestrator.cancel(order_id, reason)

    async def retry_payment(self, order_id: UUID, payment_token: str) -> None:
        await self._orchestrator.retry_payment(order_id, payment_token)

    async def get_status(self, order_id: UUID) -> OrderStatus:
        return await self._orchestrator.get_status(order_id)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def bus(self) -> InMemoryEventBus:
        return self._bus

    @property
    def orchestrator(self) -> CheckoutOrchestrator:
        return self._orchestrator

    @property
    def repository(self) -> OrderRepository:
        return self._repository

    @property
    def store(self) -> OrderStore:
        return self._store

    @property
    def stock(self) -> StockLedger:
        return self._stock

    @property
    def payments(self) -> PaymentAttemptLedger:
        return self._payments

    @property
    def idempotency(self) -> IdempotencyStore:
        return self._idempotency

    @property
    def dead_letters(self) -> DeadLetterSink:
        return self._bus.dead_letters

    @property
    def signals(self) -> CancellationSignals:
        return self._signals

    @property
    def config(self) -> SagaConfig:
        return self._config

    @property
    def is_started(self) -> bool:
        return self._started


__all__ = ["CheckoutSaga"]
