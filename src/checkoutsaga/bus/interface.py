"""Event bus interface definitions.

The event bus decouples the saga's steps: producers commit their state, then
publish events, and every subscribed handler receives them asynchronously.
Delivery is at-least-once, so handlers must be idempotent.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.protocols import EventSubscriber, FlexibleEventHandler

# Type alias for simple function-based handlers
EventHandlerFunc = Callable[[DomainEvent], Awaitable[None] | None]


class EventBus(ABC):
    """
    Abstract event bus for publishing and subscribing to domain events.

    Each subscription is a slot with its own queue: deliveries to one slot
    are processed in order, slots run concurrently. ``publish`` returns as
    soon as deliveries are queued and never waits for handlers.

    Tracing Support:
        Implementations use the composition-based ``Tracer`` from
        ``checkoutsaga.observability`` and the span names:

        - ``checkoutsaga.event_bus.dispatch`` - fan-out of one event to its slots
        - ``checkoutsaga.event_bus.handle`` - one delivery attempt to one slot

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(OrderPlaced, payment_handler)
        >>> await bus.publish([OrderPlaced(...)])
        >>> await bus.wait_until_idle()
    """

    @abstractmethod
    async def publish(self, events: Sequence[DomainEvent]) -> None:
        """
        Log events and queue them for every matching subscription.

        Raises:
            EventBusError: If the bus has been shut down
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: FlexibleEventHandler | EventHandlerFunc,
        *,
        name: str | None = None,
    ) -> None:
        """
        Subscribe a handler to a specific event type.

        Args:
            event_type: The event class to subscribe to
            handler: Object with handle() method or callable
            name: Subscription name used in logs and dead-letter entries
                (defaults to the handler's class or function name)
        """
        pass

    @abstractmethod
    def unsubscribe(
        self,
        event_type: type[DomainEvent],
        handler: FlexibleEventHandler | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from a specific event type.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        pass

    @abstractmethod
    def subscribe_all(self, subscriber: EventSubscriber) -> None:
        """Subscribe an EventSubscriber to all its declared event types."""
        pass

    @abstractmethod
    def subscribe_to_all_events(
        self,
        handler: FlexibleEventHandler | EventHandlerFunc,
        *,
        name: str | None = None,
    ) -> None:
        """
        Subscribe a handler to all event types (wildcard subscription).

        Useful for audit logging and test recorders.
        """
        pass

    @abstractmethod
    def unsubscribe_from_all_events(
        self,
        handler: FlexibleEventHandler | EventHandlerFunc,
    ) -> bool:
        """Unsubscribe a handler from the wildcard subscription."""
        pass

    @abstractmethod
    async def wait_until_idle(self, timeout: float | None = None) -> None:
        """
        Wait until every queued delivery has been handled or dead-lettered.

        Raises:
            TimeoutError: If the bus is still busy after timeout seconds
        """
        pass

    @abstractmethod
    async def shutdown(self, timeout: float = 30.0) -> None:
        """Drain pending deliveries, stop workers, and reject further publishes."""
        pass


__all__ = [
    "EventBus",
    "EventHandlerFunc",
]
