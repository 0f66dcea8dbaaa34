"""
Stock levels and per-order reservations.

Each product's counter is guarded by its own asyncio lock. A reservation is
keyed by (product_id, order_id), so reserving the same line twice decrements
stock once, and releasing it twice restores stock once.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from checkoutsaga.exceptions import InsufficientStockError
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_ORDER_ID,
    ATTR_PRODUCT_ID,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockReservation:
    """
    Stock taken for one line of one order.

    Attributes:
        product_id: Product the stock was taken from
        quantity: Units taken
        order_id: Order the units were taken for
        reserved_at: When the stock was decremented
    """

    product_id: str
    quantity: int
    order_id: UUID
    reserved_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class StockLedger(Protocol):
    """Stock counters with idempotent per-order reservations."""

    async def reserve(self, product_id: str, order_id: UUID, quantity: int) -> bool:
        """
        Decrement stock for an order line.

        Returns:
            True if stock was decremented, False if already reserved

        Raises:
            InsufficientStockError: If the decrement would make stock negative
        """
        ...

    async def release(self, product_id: str, order_id: UUID) -> bool: ...

    async def release_order(self, order_id: UUID) -> list[StockReservation]: ...

    async def available(self, product_id: str) -> int: ...

    async def shortfall_reported(self, product_id: str, order_id: UUID) -> bool: ...

    async def mark_shortfall(self, product_id: str, order_id: UUID) -> bool: ...


class InMemoryStockLedger:
    """
    In-memory stock ledger.

    Unknown products have zero stock.

    Example:
        >>> ledger = InMemoryStockLedger({"A": 10})
        >>> await ledger.reserve("A", order_id, 2)
        True
        >>> await ledger.available("A")
        8
    """

    def __init__(
        self,
        initial_stock: dict[str, int] | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._stock: dict[str, int] = {}
        self._reservations: dict[tuple[str, UUID], StockReservation] = {}
        self._shortfalls: set[tuple[str, UUID]] = set()
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        for product_id, quantity in (initial_stock or {}).items():
            self._set(product_id, quantity)

    def _set(self, product_id: str, quantity: int) -> None:
        if quantity < 0:
            raise ValueError(f"stock must be >= 0, got {quantity} for {product_id!r}")
        self._stock[product_id] = quantity

    async def set_stock(self, product_id: str, quantity: int) -> None:
        """Overwrite the stock level of a product."""
        async with self._locks[product_id]:
            self._set(product_id, quantity)

    async def restock(self, product_id: str, quantity: int) -> int:
        """
        Add units to a product.

        Returns:
            The new stock level
        """
        if quantity <= 0:
            raise ValueError(f"restock quantity must be positive, got {quantity}")
        async with self._locks[product_id]:
            self._stock[product_id] = self._stock.get(product_id, 0) + quantity
            return self._stock[product_id]

    async def available(self, product_id: str) -> int:
        async with self._locks[product_id]:
            return self._stock.get(product_id, 0)

    async def reserve(self, product_id: str, order_id: UUID, quantity: int) -> bool:
        """
        Decrement stock for an order line, at most once per (product, order).

        Raises:
            InsufficientStockError: If the decrement would make stock negative
            ValueError: If quantity is not positive
        """
        if quantity <= 0:
            raise ValueError(f"reservation quantity must be positive, got {quantity}")

        with self._tracer.span(
            "checkoutsaga.stock.reserve",
            {
                ATTR_PRODUCT_ID: product_id,
                ATTR_ORDER_ID: str(order_id),
                ATTR_DB_SYSTEM: "memory",
            },
        ):
            async with self._locks[product_id]:
                key = (product_id, order_id)
                if key in self._reservations:
                    logger.debug(
                        "Stock for %s already reserved for order %s",
                        product_id,
                        order_id,
                        extra={"product_id": product_id, "order_id": str(order_id)},
                    )
                    return False

                available = self._stock.get(product_id, 0)
                if available < quantity:
                    raise InsufficientStockError(product_id, quantity, available)

                self._stock[product_id] = available - quantity
                self._reservations[key] = StockReservation(
                    product_id=product_id, quantity=quantity, order_id=order_id
                )
                return True

    async def release(self, product_id: str, order_id: UUID) -> bool:
        """
        Return a reservation's units to stock.

        Returns:
            True if a reservation was released, False if there was none
        """
        async with self._locks[product_id]:
            reservation = self._reservations.pop((product_id, order_id), None)
            if reservation is None:
                return False
            self._stock[product_id] = self._stock.get(product_id, 0) + reservation.quantity

        logger.info(
            "Released %d unit(s) of %s for order %s",
            reservation.quantity,
            product_id,
            order_id,
            extra={"product_id": product_id, "order_id": str(order_id)},
        )
        return True

    async def release_order(self, order_id: UUID) -> list[StockReservation]:
        """Release every reservation held by an order."""
        held = await self.reservations_for(order_id)
        released = []
        for reservation in held:
            if await self.release(reservation.product_id, order_id):
                released.append(reservation)
        return released

    async def reservations_for(self, order_id: UUID) -> list[StockReservation]:
        return [r for (_, oid), r in list(self._reservations.items()) if oid == order_id]

    async def shortfall_reported(self, product_id: str, order_id: UUID) -> bool:
        async with self._locks[product_id]:
            return (product_id, order_id) in self._shortfalls

    async def mark_shortfall(self, product_id: str, order_id: UUID) -> bool:
        """
        Remember that a shortfall was reported for a line.

        Returns:
            True the first time for a (product, order) pair, False afterwards
        """
        async with self._locks[product_id]:
            key = (product_id, order_id)
            if key in self._shortfalls:
                return False
            self._shortfalls.add(key)
            return True


__all__ = [
    "InMemoryStockLedger",
    "StockLedger",
    "StockReservation",
]
