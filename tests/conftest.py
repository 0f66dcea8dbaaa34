"""
Shared pytest fixtures for the checkoutsaga tests.

This module provides:
- Order fixtures (order_factory)
- Store and repository fixtures (order_store, repository)
- Event bus fixtures with millisecond retry backoff
- A fully wired saga harness
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from uuid import uuid4

import pytest
import pytest_asyncio

from checkoutsaga.aggregates.order import Order, OrderLine
from checkoutsaga.aggregates.repository import OrderRepository
from checkoutsaga.bus.memory import InMemoryEventBus
from checkoutsaga.bus.retry import RetryConfig
from checkoutsaga.repositories.dead_letter import InMemoryDeadLetterSink
from checkoutsaga.stores.in_memory import InMemoryOrderStore
from checkoutsaga.testing import SagaTestHarness

# =============================================================================
# Order Fixtures
# =============================================================================


def make_order(
    lines: list[tuple[str, int, int]] | None = None,
    user_id: str = "user-1",
    place: bool = True,
) -> Order:
    """Build an order from (product_id, unit_price_cents, quantity) tuples."""
    order = Order.start(user_id)
    order.add_lines(
        OrderLine(product_id=p, unit_price_cents=price, quantity=qty)
        for p, price, qty in (lines or [("A", 500, 2)])
    )
    if place:
        order.place()
    return order


@pytest.fixture
def order_factory() -> Callable[..., Order]:
    """
    Factory for placed orders.

    Usage:
        def test_something(order_factory):
            order = order_factory([("A", 500, 2), ("B", 150, 1)])
    """
    return make_order


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid4().hex[:8]}"


# =============================================================================
# Store and Repository Fixtures
# =============================================================================


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore(enable_tracing=False)


@pytest.fixture
def repository(order_store: InMemoryOrderStore) -> OrderRepository:
    return OrderRepository(order_store, enable_tracing=False)


# =============================================================================
# Event Bus Fixtures
# =============================================================================


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Three retries with millisecond backoff and no jitter."""
    return RetryConfig(max_retries=3, initial_delay=0.001, max_delay=0.01, jitter=0.0)


@pytest.fixture
def dead_letters() -> InMemoryDeadLetterSink:
    return InMemoryDeadLetterSink(enable_tracing=False)


@pytest_asyncio.fixture
async def bus(
    order_store: InMemoryOrderStore,
    fast_retry: RetryConfig,
    dead_letters: InMemoryDeadLetterSink,
) -> AsyncGenerator[InMemoryEventBus, None]:
    """
    Event bus sharing the order store's log.

    The bus is shut down after the test so no worker outlives its loop.
    """
    event_bus = InMemoryEventBus(
        event_log=order_store.event_log,
        retry_config=fast_retry,
        handler_timeout=2.0,
        dead_letters=dead_letters,
        enable_tracing=False,
    )
    yield event_bus
    await event_bus.shutdown(timeout=1.0)


# =============================================================================
# Saga Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def harness() -> AsyncGenerator[SagaTestHarness, None]:
    """A started saga with fakes and 10 units of products A and B in stock."""
    h = SagaTestHarness(stock={"A": 10, "B": 10})
    yield h
    await h.shutdown()
