"""
Persistence interfaces for orders and the event log.

The saga persists two things:

- The current state of each order, versioned for optimistic concurrency.
- An append-only log of every event that was committed or published,
  ordered by a global position and idempotent by event id.

An order commit writes the new state and its events in one atomic step, so
an event is never published for a state change that did not happen.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from checkoutsaga.events.base import DomainEvent


@dataclass(frozen=True)
class StoredEvent:
    """
    Wrapper for a logged event with its global position.

    Attributes:
        event: The underlying domain event
        global_position: Position across all logged events (1-based)
        stored_at: When the event was appended to the log
    """

    event: DomainEvent
    global_position: int
    stored_at: datetime

    @property
    def event_id(self) -> UUID:
        return self.event.event_id

    @property
    def event_type(self) -> str:
        return self.event.event_type

    @property
    def order_id(self) -> UUID:
        return self.event.order_id

    def __str__(self) -> str:
        return f"StoredEvent({self.event_type}, position={self.global_position})"


@dataclass(frozen=True)
class OrderRecord:
    """
    Persisted state of one order.

    Attributes:
        order_id: ID of the order
        version: Number of commits made to this order (starts at 1)
        state: JSON-compatible state dictionary
        updated_at: When the last commit happened
    """

    order_id: UUID
    version: int
    state: dict[str, Any]
    updated_at: datetime


class EventLog(ABC):
    """
    Append-only event log.

    Appending an event whose id is already logged is a no-op, so producers
    and the bus can both append the same event safely.
    """

    @abstractmethod
    async def append(self, events: Sequence[DomainEvent]) -> list[StoredEvent]:
        """
        Append events to the log.

        Returns:
            The newly stored events; already logged ids are skipped
        """
        pass

    @abstractmethod
    async def read(
        self,
        from_position: int = 0,
        event_types: Sequence[type[DomainEvent]] | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        """
        Read logged events in global order.

        Args:
            from_position: Return events with a global position greater than this
            event_types: Only return events of these classes (optional)
            limit: Maximum number of events to return (optional)
        """
        pass

    @abstractmethod
    async def events_for_order(self, order_id: UUID) -> list[StoredEvent]:
        """All logged events of one order, in global order."""
        pass

    @abstractmethod
    async def contains(self, event_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_global_position(self) -> int:
        """Position of the last logged event (0 if the log is empty)."""
        pass


class OrderStore(ABC):
    """
    Transactional store for order state.

    ``commit`` is a compare-and-set: it succeeds only if the stored version
    still equals ``expected_version`` (0 for an order never committed), and
    appends ``events`` to the event log in the same atomic step.
    """

    @property
    @abstractmethod
    def event_log(self) -> EventLog:
        """The event log this store appends committed events to."""
        pass

    @abstractmethod
    async def get(self, order_id: UUID) -> OrderRecord | None:
        """Load the current record of an order, or None if it was never committed."""
        pass

    @abstractmethod
    async def commit(
        self,
        order_id: UUID,
        expected_version: int,
        state: dict[str, Any],
        events: Sequence[DomainEvent] = (),
    ) -> int:
        """
        Atomically replace an order's state and log its events.

        Returns:
            The new version of the order

        Raises:
            ConcurrentModificationError: If the stored version differs from
                expected_version
        """
        pass


__all__ = [
    "EventLog",
    "OrderRecord",
    "OrderStore",
    "StoredEvent",
]
