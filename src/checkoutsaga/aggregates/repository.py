"""
Repository for Order aggregates.

Loads orders from an OrderStore and saves them back with a compare-and-set
on the version they were loaded at. Events passed to ``save`` are logged in
the same commit; publishing them is left to the caller, after the commit.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar
from uuid import UUID

from checkoutsaga.aggregates.order import Order
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.exceptions import ConcurrentModificationError, OrderNotFoundError
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_VERSION,
)
from checkoutsaga.stores.interface import OrderStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OrderRepository:
    """
    Repository for Order aggregates with optimistic concurrency.

    Example:
        >>> repo = OrderRepository(InMemoryOrderStore())
        >>> order = Order.start("user-1")
        >>> order.add_lines(lines)
        >>> order.place()
        >>> await repo.save(order, [OrderPlaced(...)])
        >>> loaded = await repo.load(order.order_id)
        >>> loaded.version
        1
    """

    def __init__(
        self,
        store: OrderStore,
        *,
        conflict_retries: int = 5,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Args:
            store: Store holding order state and the event log
            conflict_retries: Default number of re-runs in retry_on_conflict
            tracer: Optional custom Tracer instance
            enable_tracing: If True, emit traces. Ignored if tracer is provided.
        """
        if conflict_retries < 0:
            raise ValueError(f"conflict_retries must be >= 0, got {conflict_retries}")
        self._store = store
        self._conflict_retries = conflict_retries
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def store(self) -> OrderStore:
        return self._store

    async def load(self, order_id: UUID) -> Order:
        """
        Load an order at its current version.

        Raises:
            OrderNotFoundError: If the order was never saved
        """
        with self._tracer.span("checkoutsaga.repository.load", {ATTR_ORDER_ID: str(order_id)}):
            record = await self._store.get(order_id)
            if record is None:
                raise OrderNotFoundError(order_id)
            return Order.from_record(order_id, record.state, record.version)

    async def exists(self, order_id: UUID) -> bool:
        return await self._store.get(order_id) is not None

    async def save(self, order: Order, events: Sequence[DomainEvent] = ()) -> int:
        """
        Commit the order's state together with its events.

        The commit succeeds only if nobody else saved the order since it was
        loaded. On success the aggregate's version is advanced.

        Returns:
            The new version

        Raises:
            ConcurrentModificationError: If the stored version moved on
        """
        if not order.has_changes and not events:
            return order.version

        with self._tracer.span(
            "checkoutsaga.repository.save",
            {
                ATTR_ORDER_ID: str(order.order_id),
                ATTR_ORDER_STATUS: order.status.value,
                ATTR_EXPECTED_VERSION: order.version,
                ATTR_EVENT_COUNT: len(events),
            },
        ) as span:
            new_version = await self._store.commit(
                order.order_id, order.version, order.to_record(), events
            )
            order.mark_committed(new_version)
            if span:
                span.set_attribute(ATTR_VERSION, new_version)

        logger.debug(
            "Saved order %s at version %d (%s)",
            order.order_id,
            new_version,
            order.status.value,
            extra={
                "order_id": str(order.order_id),
                "version": new_version,
                "status": order.status.value,
                "event_count": len(events),
            },
        )
        return new_version

    async def retry_on_conflict(
        self,
        operation: Callable[[], Awaitable[T]],
        attempts: int | None = None,
    ) -> T:
        """
        Run a load-modify-save operation, re-running it on version conflicts.

        The operation must load the order itself so each run sees the latest
        state.

        Args:
            operation: Zero-argument coroutine function to run
            attempts: Re-runs after the first conflict (defaults to conflict_retries)

        Raises:
            ConcurrentModificationError: If every run lost the race
        """
        retries = self._conflict_retries if attempts is None else attempts
        for run in range(retries + 1):
            try:
                return await operation()
            except ConcurrentModificationError as e:
                if run >= retries:
                    raise
                logger.warning(
                    "Version conflict on order %s, retrying (%d/%d)",
                    e.order_id,
                    run + 1,
                    retries,
                    extra={"order_id": str(e.order_id), "attempt": run + 1},
                )
                # Let the competing writer finish
                await asyncio.sleep(0)
        raise AssertionError("unreachable")


__all__ = ["OrderRepository"]
