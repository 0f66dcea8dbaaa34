"""
Dead-letter sink for deliveries that exhausted their retries.

The bus never drops an event: when a subscription fails an event on every
attempt, the delivery is recorded here with the event itself, so operators
can inspect it and redeliver it to the same subscription later.
"""

import asyncio
import logging
import traceback
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.exceptions import DeadLetterNotFoundError
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_ATTEMPT,
    ATTR_DB_SYSTEM,
    ATTR_DEAD_LETTER_ID,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_NAME,
)

logger = logging.getLogger(__name__)

STATUS_FAILED = "failed"
STATUS_RETRYING = "retrying"
STATUS_RESOLVED = "resolved"

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class DeadLetterEntry:
    """
    A delivery that failed on every attempt.

    Attributes:
        id: Unique entry identifier
        event: The event that could not be handled
        event_id: ID of that event
        order_id: Order the event belongs to
        event_type: Type of the failed event
        handler_name: Name of the subscription that failed
        error_message: Message of the last error
        error_type: Class name of the last error
        error_stacktrace: Formatted stack trace of the last error
        attempts: Number of delivery attempts made
        first_failed_at: When the delivery was first dead-lettered
        last_failed_at: When it most recently failed
        status: failed, retrying or resolved
        resolved_at: When the entry was resolved (if applicable)
        resolved_by: Who resolved the entry (if applicable)
    """

    id: int
    event: DomainEvent
    event_id: UUID
    order_id: UUID
    event_type: str
    handler_name: str
    error_message: str
    error_type: str
    error_stacktrace: str | None = None
    attempts: int = 0
    first_failed_at: datetime | None = None
    last_failed_at: datetime | None = None
    status: str = STATUS_FAILED
    resolved_at: datetime | None = None
    resolved_by: str | None = None


@dataclass(frozen=True)
class DeadLetterStats:
    """
    Aggregate statistics for the dead-letter sink.

    Attributes:
        total_failed: Number of entries in failed status
        total_retrying: Number of entries being redelivered
        total_resolved: Number of resolved entries
        affected_handlers: Number of distinct subscriptions with open entries
        oldest_failure: Timestamp of the oldest open failure
    """

    total_failed: int = 0
    total_retrying: int = 0
    total_resolved: int = 0
    affected_handlers: int = 0
    oldest_failure: datetime | None = None


@runtime_checkable
class DeadLetterSink(Protocol):
    """
    Protocol for dead-letter storage.

    Entries are keyed by (event_id, handler_name): dead-lettering the same
    delivery again updates the existing entry instead of adding a new one.
    """

    async def add_failed_delivery(
        self,
        event: DomainEvent,
        handler_name: str,
        error: BaseException,
        attempts: int,
    ) -> DeadLetterEntry:
        """Add or update the entry for a failed delivery."""
        ...

    async def list_entries(
        self,
        handler_name: str | None = None,
        status: str | None = STATUS_FAILED,
        limit: int = 100,
    ) -> list[DeadLetterEntry]:
        """List entries, newest failure first."""
        ...

    async def get_entry(self, entry_id: int) -> DeadLetterEntry | None: ...

    async def mark_retrying(self, entry_id: int) -> None: ...

    async def mark_resolved(self, entry_id: int, resolved_by: str) -> None: ...

    async def get_stats(self) -> DeadLetterStats: ...


class InMemoryDeadLetterSink:
    """
    In-memory dead-letter sink.

    All data is lost when the process terminates.

    Example:
        >>> sink = InMemoryDeadLetterSink()
        >>> entry = await sink.add_failed_delivery(event, "ShipmentTriggerHandler", error, 6)
        >>> await sink.mark_resolved(entry.id, resolved_by="ops")
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._entries: dict[tuple[UUID, str], DeadLetterEntry] = {}
        self._id_counter = 0
        self._lock = asyncio.Lock()

    async def add_failed_delivery(
        self,
        event: DomainEvent,
        handler_name: str,
        error: BaseException,
        attempts: int,
    ) -> DeadLetterEntry:
        """
        Add or update a failed delivery.

        Args:
            event: Event that failed
            handler_name: Name of the subscription that failed to process it
            error: Last exception raised by the handler
            attempts: Number of delivery attempts made

        Returns:
            The created or updated entry
        """
        with self._tracer.span(
            "checkoutsaga.dead_letter.add",
            {
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_EVENT_TYPE: event.event_type,
                ATTR_HANDLER_NAME: handler_name,
                ATTR_ERROR_TYPE: type(error).__name__,
                ATTR_ATTEMPT: attempts,
                ATTR_DB_SYSTEM: "memory",
            },
        ):
            now = datetime.now(UTC)
            key = (event.event_id, handler_name)
            stacktrace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

            async with self._lock:
                entry = self._entries.get(key)
                if entry is not None:
                    entry.attempts += attempts
                    entry.last_failed_at = now
                    entry.error_message = str(error)
                    entry.error_type = type(error).__name__
                    entry.error_stacktrace = stacktrace
                    entry.status = STATUS_FAILED
                    entry.resolved_at = None
                    entry.resolved_by = None
                else:
                    self._id_counter += 1
                    entry = DeadLetterEntry(
                        id=self._id_counter,
                        event=event,
                        event_id=event.event_id,
                        order_id=event.order_id,
                        event_type=event.event_type,
                        handler_name=handler_name,
                        error_message=str(error),
                        error_type=type(error).__name__,
                        error_stacktrace=stacktrace,
                        attempts=attempts,
                        first_failed_at=now,
                        last_failed_at=now,
                    )
                    self._entries[key] = entry
                return entry

    async def list_entries(
        self,
        handler_name: str | None = None,
        status: str | None = STATUS_FAILED,
        limit: int = 100,
    ) -> list[DeadLetterEntry]:
        """
        Get entries from the sink.

        Args:
            handler_name: Filter by subscription name (optional)
            status: Filter by status; None returns every status
            limit: Maximum number of entries to return
        """
        async with self._lock:
            entries = list(self._entries.values())

        if status is not None:
            entries = [e for e in entries if e.status == status]
        if handler_name:
            entries = [e for e in entries if e.handler_name == handler_name]

        entries.sort(key=lambda e: e.last_failed_at or _EPOCH, reverse=True)
        return entries[:limit]

    async def get_entry(self, entry_id: int) -> DeadLetterEntry | None:
        async with self._lock:
            return self._find(entry_id)

    async def mark_retrying(self, entry_id: int) -> None:
        """
        Mark an entry as being redelivered.

        Raises:
            DeadLetterNotFoundError: If no entry has this id
        """
        with self._tracer.span(
            "checkoutsaga.dead_letter.retry",
            {ATTR_DEAD_LETTER_ID: entry_id, ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                entry = self._find(entry_id)
                if entry is None:
                    raise DeadLetterNotFoundError(entry_id)
                entry.status = STATUS_RETRYING

    async def mark_resolved(self, entry_id: int, resolved_by: str) -> None:
        """
        Mark an entry as resolved.

        Raises:
            DeadLetterNotFoundError: If no entry has this id
        """
        with self._tracer.span(
            "checkoutsaga.dead_letter.resolve",
            {ATTR_DEAD_LETTER_ID: entry_id, ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                entry = self._find(entry_id)
                if entry is None:
                    raise DeadLetterNotFoundError(entry_id)
                entry.status = STATUS_RESOLVED
                entry.resolved_at = datetime.now(UTC)
                entry.resolved_by = resolved_by

        logger.info(
            "Dead-letter entry %s resolved by %s",
            entry_id,
            resolved_by,
            extra={"dead_letter_id": entry_id, "resolved_by": resolved_by},
        )

    async def get_stats(self) -> DeadLetterStats:
        async with self._lock:
            entries = list(self._entries.values())

        open_entries = [e for e in entries if e.status != STATUS_RESOLVED]
        failure_times = [e.first_failed_at for e in open_entries if e.first_failed_at]
        return DeadLetterStats(
            total_failed=sum(1 for e in entries if e.status == STATUS_FAILED),
            total_retrying=sum(1 for e in entries if e.status == STATUS_RETRYING),
            total_resolved=sum(1 for e in entries if e.status == STATUS_RESOLVED),
            affected_handlers=len({e.handler_name for e in open_entries}),
            oldest_failure=min(failure_times) if failure_times else None,
        )

    async def clear(self) -> None:
        """Remove all entries. Useful in tests."""
        async with self._lock:
            self._entries.clear()
            self._id_counter = 0

    def _find(self, entry_id: int) -> DeadLetterEntry | None:
        for entry in self._entries.values():
            if entry.id == entry_id:
                return entry
        return None


__all__ = [
    "DeadLetterEntry",
    "DeadLetterSink",
    "DeadLetterStats",
    "InMemoryDeadLetterSink",
    "STATUS_FAILED",
    "STATUS_RESOLVED",
    "STATUS_RETRYING",
]
