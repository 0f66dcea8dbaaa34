"""
Checkout Saga Example

This example walks through the checkout saga end to end:
- Wiring a CheckoutSaga with collaborators
- A successful checkout that ends Fulfilled
- A declined card, followed by a payment retry
- Cancelling an order whose payment failed

The collaborators are the in-memory fakes from checkoutsaga.testing; a real
application passes its own gateway, shipment and notification clients.

Run with: python examples/checkout_example.py
"""

import asyncio
import logging

from checkoutsaga import CartItem, CheckoutSaga, RetryConfig, SagaConfig
from checkoutsaga.repositories.stock import InMemoryStockLedger
from checkoutsaga.testing import (
    FakePaymentGateway,
    RecordingNotificationService,
    RecordingShipmentService,
)

# =============================================================================
# Step 1: Configure the saga
# =============================================================================
# Deadlines are short so the example finishes quickly.

CONFIG = SagaConfig(
    retry=RetryConfig(max_retries=3, initial_delay=0.01, max_delay=0.1),
    gateway_timeout=1.0,
    handler_timeout=5.0,
    enable_tracing=False,
)

CART = [CartItem("BOOK-1", 1_499, 2), CartItem("MUG-7", 899, 1)]


# =============================================================================
# Step 2: Run some checkouts
# =============================================================================


async def main() -> None:
    """Demonstrate the checkout saga."""
    print("=" * 60)
    print("Checkout Saga Example")
    print("=" * 60)

    gateway = FakePaymentGateway(gateway_id="example-gateway")
    shipments = RecordingShipmentService()
    notifications = RecordingNotificationService()
    stock = InMemoryStockLedger({"BOOK-1": 10, "MUG-7": 3}, enable_tracing=False)

    async with CheckoutSaga(
        gateway, shipments, notifications, stock=stock, config=CONFIG
    ) as saga:
        # A successful checkout
        print("\n1. Checking out a cart that will be paid")
        result = await saga.checkout(CART, user_id="alice", payment_token="tok_visa_4242")
        print(f"   Order {result.order_id} is {result.status.value}")

        await saga.wait_until_idle(timeout=5.0)
        print(f"   After the saga settled: {(await saga.get_status(result.order_id)).value}")
        print(f"   BOOK-1 left in stock: {await stock.available('BOOK-1')}")
        print(f"   Shipments requested: {len(shipments.shipments_for(result.order_id))}")

        # A declined card
        print("\n2. Checking out with a card that will be declined")
        gateway.fail("card_declined")
        declined = await saga.checkout(CART, user_id="bob", payment_token="tok_visa_0002")
        await saga.wait_until_idle(timeout=5.0)
        order = await saga.repository.load(declined.order_id)
        print(f"   Order {declined.order_id} is {order.status.value}: {order.failure_reason}")
        print(f"   Bob was notified: {notifications.templates_for(declined.order_id)}")

        # Retry with another card
        print("\n3. Retrying the payment with another card")
        gateway.succeed()
        await saga.retry_payment(declined.order_id, "tok_mastercard_5555")
        await saga.wait_until_idle(timeout=5.0)
        print(f"   Order is now {(await saga.get_status(declined.order_id)).value}")

        # Cancel a failed order
        print("\n4. Cancelling an order whose payment failed")
        gateway.fail("insufficient_funds")
        abandoned = await saga.checkout(CART, user_id="carol", payment_token="tok_visa_0003")
        await saga.wait_until_idle(timeout=5.0)
        cancelled = await saga.cancel(abandoned.order_id, reason="customer_request")
        await saga.wait_until_idle(timeout=5.0)
        print(f"   Order {abandoned.order_id} is {cancelled.status.value}")

        print(f"\nEvents published: {len(saga.bus.published_events)}")
        print(f"Bus stats: {saga.bus.get_stats()}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    asyncio.run(main())
