"""In-memory event bus implementation.

This module provides the in-process event bus that carries the checkout
saga's events between its handlers.

Every subscription gets a slot: a FIFO queue and a worker task that handles
the slot's deliveries one at a time. A failing delivery is retried in its
slot with exponential backoff; once retries are exhausted it is recorded in
the dead-letter sink and a HandlerExhausted event is published. Other slots
are never held up by a failing one.
"""

import asyncio
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from checkoutsaga.bus.interface import EventBus, EventHandlerFunc
from checkoutsaga.bus.retry import RetryConfig, calculate_backoff
from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import HandlerExhausted
from checkoutsaga.exceptions import DeadLetterNotFoundError, EventBusError
from checkoutsaga.handlers.adapter import HandlerAdapter
from checkoutsaga.observability import Tracer, create_tracer
from checkoutsaga.observability.attributes import (
    ATTR_ATTEMPT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_ORDER_ID,
)
from checkoutsaga.protocols import EventSubscriber, FlexibleEventHandler
from checkoutsaga.repositories.dead_letter import DeadLetterSink, InMemoryDeadLetterSink
from checkoutsaga.stores.in_memory import InMemoryEventLog
from checkoutsaga.stores.interface import EventLog

logger = logging.getLogger(__name__)


@dataclass
class _Delivery:
    event: DomainEvent
    dead_letter_id: int | None = None


@dataclass(eq=False)
class _Slot:
    """One subscription: its handler, its delivery queue and its worker task."""

    event_type: type[DomainEvent] | None
    adapter: HandlerAdapter
    name: str
    queue: asyncio.Queue[_Delivery] = field(default_factory=asyncio.Queue)
    worker: asyncio.Task[None] | None = None

    def accepts(self, event: DomainEvent) -> bool:
        # None marks a wildcard subscription
        return self.event_type is None or type(event) is self.event_type


class InMemoryEventBus(EventBus):
    """
    In-memory event bus with per-subscription delivery slots.

    Features:
    - Thread-safe subscription management
    - Support for sync and async handlers
    - Wildcard subscriptions (receive all events)
    - Per-slot ordering, concurrency across slots
    - Retry with backoff, dead-lettering and HandlerExhausted diagnostics
    - Append-only event log with replay
    - Optional OpenTelemetry tracing

    Example:
        >>> bus = InMemoryEventBus(retry_config=RetryConfig(max_retries=3))
        >>> bus.subscribe(PaymentSucceeded, fulfillment_handler)
        >>> await bus.publish([payment_succeeded])
        >>> await bus.wait_until_idle()

    Thread Safety:
        - Subscription methods (subscribe, unsubscribe) are thread-safe
        - Publishing should only be called from the event loop
    """

    def __init__(
        self,
        *,
        event_log: EventLog | None = None,
        retry_config: RetryConfig | None = None,
        handler_timeout: float | None = 30.0,
        dead_letters: DeadLetterSink | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the event bus with an empty subscriber registry.

        Args:
            event_log: Log that published events are appended to
                (defaults to a fresh InMemoryEventLog)
            retry_config: Redelivery policy for failing handlers
            handler_timeout: Seconds a single handler attempt may take, None for no limit
            dead_letters: Sink for exhausted deliveries
                (defaults to a fresh InMemoryDeadLetterSink)
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True, emit traces. Ignored if tracer is provided.
        """
        if handler_timeout is not None and handler_timeout <= 0:
            raise ValueError(f"handler_timeout must be positive, got {handler_timeout}")

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._event_log = event_log or InMemoryEventLog(tracer=self._tracer)
        self._retry_config = retry_config or RetryConfig()
        self._handler_timeout = handler_timeout
        self._dead_letters: DeadLetterSink = dead_letters or InMemoryDeadLetterSink(
            tracer=self._tracer
        )

        # Slots in registration order, wildcard slots included
        self._slots: list[_Slot] = []
        # Lock for thread-safe subscription management
        self._lock = threading.RLock()
        self._workers: set[asyncio.Task[None]] = set()

        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

        self._published: list[DomainEvent] = []
        self._stats = {
            "events_published": 0,
            "deliveries_enqueued": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
            "retries": 0,
            "dead_lettered": 0,
        }

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        """
        Log events and queue them for every matching subscription.

        Events already in the log (for example because they were committed
        together with an order) are not logged twice but are still delivered.

        Raises:
            EventBusError: If the bus has been shut down
        """
        if self._closed:
            raise EventBusError("Cannot publish: the event bus has been shut down")
        if not events:
            return

        events = list(events)
        await self._event_log.append(events)

        for event in events:
            self._published.append(event)
            self._stats["events_published"] += 1
            self._dispatch(event)

    def redeliver(self, event: DomainEvent) -> int:
        """
        Queue an event again for all of its subscriptions.

        Simulates the duplicate delivery an at-least-once transport may
        produce. The event is not appended to the log again.

        Returns:
            Number of subscriptions the event was queued for
        """
        if self._closed:
            raise EventBusError("Cannot redeliver: the event bus has been shut down")
        logger.info(
            "Redelivering %s %s",
            event.event_type,
            event.event_id,
            extra={"event_type": event.event_type, "event_id": str(event.event_id)},
        )
        return self._dispatch(event)

    async def replay(self, from_position: int = 0) -> int:
        """
        Re-dispatch logged events, e.g. after a restart.

        Args:
            from_position: Replay events with a global position greater than this

        Returns:
            Number of events replayed
        """
        if self._closed:
            raise EventBusError("Cannot replay: the event bus has been shut down")

        stored = await self._event_log.read(from_position)
        for record in stored:
            self._dispatch(record.event)

        logger.info(
            "Replayed %d event(s) from position %d",
            len(stored),
            from_position,
            extra={"event_count": len(stored), "from_position": from_position},
        )
        return len(stored)

    async def redeliver_dead_letter(self, entry_id: int) -> None:
        """
        Queue a dead-lettered delivery again to the subscription that failed it.

        The entry is marked ``retrying`` and becomes ``resolved`` once the
        handler succeeds; if it fails again the entry returns to ``failed``.

        Raises:
            DeadLetterNotFoundError: If the entry does not exist
            EventBusError: If no current subscription matches the entry
        """
        entry = await self._dead_letters.get_entry(entry_id)
        if entry is None:
            raise DeadLetterNotFoundError(entry_id)

        with self._lock:
            slot = next(
                (s for s in self._slots if s.name == entry.handler_name and s.accepts(entry.event)),
                None,
            )
        if slot is None:
            raise EventBusError(
                f"No subscription named {entry.handler_name!r} accepts {entry.event_type}"
            )

        await self._dead_letters.mark_retrying(entry_id)
        self._enqueue(slot, _Delivery(entry.event, dead_letter_id=entry_id))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _dispatch(self, event: DomainEvent) -> int:
        """Queue one event for every matching slot, in registration order."""
        with self._lock:
            slots = [s for s in self._slots if s.accepts(event)]

        if not slots:
            logger.debug(
                "No handlers registered for event type: %s",
                event.event_type,
                extra={"event_type": event.event_type},
            )
            return 0

        logger.debug(
            "Dispatching %s to %d handler(s)",
            event.event_type,
            len(slots),
            extra={
                "event_type": event.event_type,
                "event_id": str(event.event_id),
                "order_id": str(event.order_id),
                "handler_count": len(slots),
            },
        )

        with self._tracer.span(
            "checkoutsaga.event_bus.dispatch",
            {
                ATTR_EVENT_TYPE: event.event_type,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_ORDER_ID: str(event.order_id),
                ATTR_HANDLER_COUNT: len(slots),
            },
        ):
            for slot in slots:
                self._enqueue(slot, _Delivery(event))
        return len(slots)

    def _enqueue(self, slot: _Slot, delivery: _Delivery) -> None:
        self._pending += 1
        self._idle.clear()
        self._stats["deliveries_enqueued"] += 1
        slot.queue.put_nowait(delivery)

        if slot.worker is None or slot.worker.done():
            task = asyncio.get_running_loop().create_task(
                self._run_slot(slot), name=f"checkoutsaga-slot:{slot.name}"
            )
            slot.worker = task
            self._workers.add(task)
            task.add_done_callback(self._workers.discard)

    async def _run_slot(self, slot: _Slot) -> None:
        """Worker loop: handle the slot's deliveries one at a time."""
        while True:
            delivery = await slot.queue.get()
            try:
                await self._deliver(slot, delivery)
            except Exception:
                # Only reachable if dead-lettering itself failed
                logger.exception(
                    "Could not complete delivery of %s to %s",
                    delivery.event.event_type,
                    slot.name,
                    extra={
                        "handler": slot.name,
                        "event_type": delivery.event.event_type,
                        "event_id": str(delivery.event.event_id),
                    },
                )
            finally:
                slot.queue.task_done()
                self._delivery_done()

    def _delivery_done(self) -> None:
        self._pending -= 1
        if self._pending <= 0:
            self._pending = 0
            self._idle.set()

    async def _deliver(self, slot: _Slot, delivery: _Delivery) -> None:
        event = delivery.event
        max_attempts = self._retry_config.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                await self._invoke(slot, event, attempt)
            except Exception as e:
                last_error = e
                if attempt < max_attempts:
                    delay = calculate_backoff(attempt - 1, self._retry_config)
                    self._stats["retries"] += 1
                    logger.warning(
                        "Handler %s failed on %s (attempt %d/%d), retrying in %.3fs: %s",
                        slot.name,
                        event.event_type,
                        attempt,
                        max_attempts,
                        delay,
                        e,
                        extra={
                            "handler": slot.name,
                            "event_type": event.event_type,
                            "event_id": str(event.event_id),
                            "attempt": attempt,
                        },
                    )
                    await asyncio.sleep(delay)
                continue

            if delivery.dead_letter_id is not None:
                await self._dead_letters.mark_resolved(
                    delivery.dead_letter_id, resolved_by="redelivery"
                )
            return

        if last_error is not None:
            await self._exhaust(slot, event, last_error, max_attempts)

    async def _invoke(self, slot: _Slot, event: DomainEvent, attempt: int) -> None:
        with self._tracer.span(
            "checkoutsaga.event_bus.handle",
            {
                ATTR_EVENT_TYPE: event.event_type,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_ORDER_ID: str(event.order_id),
                ATTR_HANDLER_NAME: slot.name,
                ATTR_ATTEMPT: attempt,
            },
        ) as span:
            try:
                if self._handler_timeout is None:
                    await slot.adapter.handle(event)
                else:
                    await asyncio.wait_for(slot.adapter.handle(event), self._handler_timeout)
            except Exception:
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, False)
                self._stats["handler_errors"] += 1
                raise

            if span:
                span.set_attribute(ATTR_HANDLER_SUCCESS, True)
            self._stats["handlers_invoked"] += 1
            logger.debug(
                "Handler %s processed %s",
                slot.name,
                event.event_type,
                extra={
                    "handler": slot.name,
                    "event_type": event.event_type,
                    "event_id": str(event.event_id),
                    "attempt": attempt,
                },
            )

    async def _exhaust(
        self,
        slot: _Slot,
        event: DomainEvent,
        error: Exception,
        attempts: int,
    ) -> None:
        """Dead-letter a delivery and announce it with HandlerExhausted."""
        self._stats["dead_lettered"] += 1
        logger.error(
            "Handler %s failed %s %s after %d attempt(s), dead-lettering: %s",
            slot.name,
            event.event_type,
            event.event_id,
            attempts,
            error,
            exc_info=error,
            extra={
                "handler": slot.name,
                "event_type": event.event_type,
                "event_id": str(event.event_id),
                "order_id": str(event.order_id),
                "attempt": attempts,
            },
        )
        await self._dead_letters.add_failed_delivery(event, slot.name, error, attempts)

        if isinstance(event, HandlerExhausted) or self._closed:
            return

        diagnostic = HandlerExhausted(
            order_id=event.order_id,
            failed_event_id=event.event_id,
            failed_event_type=event.event_type,
            handler_name=slot.name,
            attempts=attempts,
            error=f"{type(error).__name__}: {error}",
        ).with_causation(event)
        await self.publish([diagnostic])

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: FlexibleEventHandler | EventHandlerFunc,
        *,
        name: str | None = None,
    ) -> None:
        """
        Subscribe a handler to a specific event type.

        Thread-safe: Can be called from any thread.
        """
        adapter = HandlerAdapter(handler, name=name)
        with self._lock:
            self._slots.append(_Slot(event_type=event_type, adapter=adapter, name=adapter.name))

        logger.info(
            "Registered handler %s for %s",
            adapter.name,
            event_type.__name__,
            extra={"handler": adapter.name, "event_type": event_type.__name__},
        )

    def unsubscribe(
        self,
        event_type: type[DomainEvent],
        handler: FlexibleEventHandler | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from a specific event type.

        Deliveries already queued for the subscription are still handled.
        """
        return self._remove_slot(event_type, handler)

    def subscribe_all(self, subscriber: EventSubscriber) -> None:
        """Subscribe an EventSubscriber to all its declared event types."""
        for event_type in subscriber.subscribed_to():
            self.subscribe(event_type, subscriber)

    def subscribe_to_all_events(
        self,
        handler: FlexibleEventHandler | EventHandlerFunc,
        *,
        name: str | None = None,
    ) -> None:
        """
        Subscribe a handler to all event types (wildcard subscription).

        Thread-safe: Can be called from any thread.
        """
        adapter = HandlerAdapter(handler, name=name)
        with self._lock:
            self._slots.append(_Slot(event_type=None, adapter=adapter, name=adapter.name))

        logger.info(
            "Registered wildcard handler %s",
            adapter.name,
            extra={"handler": adapter.name},
        )

    def unsubscribe_from_all_events(
        self,
        handler: FlexibleEventHandler | EventHandlerFunc,
    ) -> bool:
        return self._remove_slot(None, handler)

    def _remove_slot(
        self,
        event_type: type[DomainEvent] | None,
        handler: FlexibleEventHandler | EventHandlerFunc,
    ) -> bool:
        with self._lock:
            for i, slot in enumerate(self._slots):
                if slot.event_type is event_type and slot.adapter == handler:
                    self._slots.pop(i)
                    logger.info(
                        "Unsubscribed handler %s",
                        slot.name,
                        extra={"handler": slot.name},
                    )
                    return True
        return False

    # ------------------------------------------------------------------
    # Introspection and lifecycle
    # ------------------------------------------------------------------

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def dead_letters(self) -> DeadLetterSink:
        return self._dead_letters

    @property
    def retry_config(self) -> RetryConfig:
        return self._retry_config

    @property
    def published_events(self) -> list[DomainEvent]:
        """Events published through this bus, in publish order."""
        return list(self._published)

    def clear_published_events(self) -> None:
        """Forget published events; the event log is not touched."""
        self._published.clear()

    @property
    def pending_deliveries(self) -> int:
        return self._pending

    @property
    def is_closed(self) -> bool:
        return self._closed

    def get_subscriber_count(self, event_type: type[DomainEvent] | None = None) -> int:
        """
        Get the number of registered subscriptions.

        Args:
            event_type: If provided, count subscriptions for this event type only.
                       Wildcard subscriptions are never included.
        """
        with self._lock:
            if event_type is None:
                return sum(1 for s in self._slots if s.event_type is not None)
            return sum(1 for s in self._slots if s.event_type is event_type)

    def get_wildcard_subscriber_count(self) -> int:
        with self._lock:
            return sum(1 for s in self._slots if s.event_type is None)

    def get_stats(self) -> dict[str, int]:
        """
        Get statistics about event bus operation.

        Returns:
            Dictionary with counts:
            - events_published: Total events published
            - deliveries_enqueued: Deliveries queued across all slots
            - handlers_invoked: Successful handler attempts
            - handler_errors: Failed handler attempts
            - retries: Redeliveries scheduled after a failure
            - dead_lettered: Deliveries that exhausted their retries
            - pending: Deliveries queued or in progress
        """
        return {**self._stats, "pending": self._pending}

    async def wait_until_idle(self, timeout: float | None = None) -> None:
        """
        Wait until every slot is drained, including follow-up deliveries
        queued by handlers while the wait is in progress.

        Raises:
            TimeoutError: If deliveries are still pending after timeout seconds
        """
        if self._pending == 0:
            return
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        Drain pending deliveries, cancel workers and close the bus.

        Handlers may still publish while the bus drains. Deliveries still
        pending after timeout seconds are abandoned; their events stay in
        the log and can be replayed.
        """
        if self._closed:
            return

        logger.info(
            "Shutting down event bus, waiting for %d pending delivery(ies)",
            self._pending,
        )
        try:
            await self.wait_until_idle(timeout)
        except TimeoutError:
            logger.warning(
                "Event bus shutdown: %d delivery(ies) did not complete within timeout",
                self._pending,
                extra={"pending": self._pending},
            )

        self._closed = True
        workers = list(self._workers)
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        with self._lock:
            for slot in self._slots:
                slot.worker = None
        self._pending = 0
        self._idle.set()

        logger.info("Event bus shutdown complete")


__all__ = ["InMemoryEventBus"]
