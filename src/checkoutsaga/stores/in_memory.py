"""
In-memory order store and event log.

Useful for testing and development. Not suitable for production
as all data is lost when the process terminates.
"""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.exceptions import ConcurrentModificationError
from checkoutsaga.observability import (
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
    ATTR_ORDER_ID,
    Tracer,
    create_tracer,
)
from checkoutsaga.stores.interface import EventLog, OrderRecord, OrderStore, StoredEvent


class InMemoryEventLog(EventLog):
    """
    In-memory append-only event log.

    Safe for concurrent publishers on one event loop: appends are serialised
    by an asyncio lock and never await while holding it.

    Attributes:
        _events: Logged events in global order
        _event_ids: Set of all logged event IDs for idempotency checks
        _global_position: Counter for global position
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._events: list[StoredEvent] = []
        self._event_ids: set[UUID] = set()
        self._global_position = 0
        self._lock = asyncio.Lock()

    async def append(self, events: Sequence[DomainEvent]) -> list[StoredEvent]:
        if not events:
            return []

        with self._tracer.span(
            "checkoutsaga.event_log.append",
            {ATTR_EVENT_COUNT: len(events), ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                return self._append_locked(events)

    def _append_locked(self, events: Sequence[DomainEvent]) -> list[StoredEvent]:
        """Append events; the caller holds the lock."""
        stored: list[StoredEvent] = []
        now = datetime.now(UTC)
        for event in events:
            if event.event_id in self._event_ids:
                # Already logged, skip it (idempotent)
                continue
            self._global_position += 1
            record = StoredEvent(event=event, global_position=self._global_position, stored_at=now)
            self._events.append(record)
            self._event_ids.add(event.event_id)
            stored.append(record)
        return stored

    async def read(
        self,
        from_position: int = 0,
        event_types: Sequence[type[DomainEvent]] | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        async with self._lock:
            result = [s for s in self._events if s.global_position > from_position]

        if event_types is not None:
            wanted = tuple(event_types)
            result = [s for s in result if isinstance(s.event, wanted)]
        if limit is not None:
            result = result[:limit]
        return result

    async def events_for_order(self, order_id: UUID) -> list[StoredEvent]:
        async with self._lock:
            return [s for s in self._events if s.order_id == order_id]

    async def contains(self, event_id: UUID) -> bool:
        async with self._lock:
            return event_id in self._event_ids

    async def get_global_position(self) -> int:
        async with self._lock:
            return self._global_position

    async def get_all_events(self) -> list[DomainEvent]:
        """All logged events in global order. Useful in tests."""
        async with self._lock:
            return [s.event for s in self._events]

    async def clear(self) -> None:
        async with self._lock:
            self._events.clear()
            self._event_ids.clear()
            self._global_position = 0


class InMemoryOrderStore(OrderStore):
    """
    In-memory order store.

    The state compare-and-set and the event-log append happen under the
    event log's lock, so a commit is atomic with respect to other commits
    and to publishers appending to the same log.

    Example:
        >>> store = InMemoryOrderStore()
        >>> version = await store.commit(order_id, 0, order.to_record(), [placed])
        >>> assert version == 1
    """

    def __init__(
        self,
        event_log: InMemoryEventLog | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._event_log = event_log or InMemoryEventLog(tracer=self._tracer)
        self._records: dict[UUID, OrderRecord] = {}

    @property
    def event_log(self) -> InMemoryEventLog:
        return self._event_log

    async def get(self, order_id: UUID) -> OrderRecord | None:
        return self._records.get(order_id)

    async def commit(
        self,
        order_id: UUID,
        expected_version: int,
        state: dict[str, Any],
        events: Sequence[DomainEvent] = (),
    ) -> int:
        with self._tracer.span(
            "checkoutsaga.order_store.commit",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_EXPECTED_VERSION: expected_version,
                ATTR_EVENT_COUNT: len(events),
                ATTR_DB_SYSTEM: "memory",
            },
        ):
            async with self._event_log._lock:
                current = self._records.get(order_id)
                current_version = current.version if current else 0
                if current_version != expected_version:
                    raise ConcurrentModificationError(order_id, expected_version, current_version)

                new_version = current_version + 1
                self._records[order_id] = OrderRecord(
                    order_id=order_id,
                    version=new_version,
                    state=dict(state),
                    updated_at=datetime.now(UTC),
                )
                self._event_log._append_locked(events)
                return new_version

    async def get_order_ids(self) -> list[UUID]:
        return list(self._records)

    async def clear(self) -> None:
        self._records.clear()
        await self._event_log.clear()


__all__ = [
    "InMemoryEventLog",
    "InMemoryOrderStore",
]
