"""
Protocol definitions for event handlers and subscribers.

Protocols:
- FlexibleEventHandler: Handler that may be sync or async
- EventSubscriber: Handler that declares its subscriptions (ABC-based)

Example:
    >>> class ShipmentAuditor(EventSubscriber):
    ...     def subscribed_to(self) -> list[type[DomainEvent]]:
    ...         return [PaymentSucceeded, CancellationRequested]
    ...
    ...     async def handle(self, event: DomainEvent) -> None:
    ...         await self.audit(event)
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Protocol, runtime_checkable

from checkoutsaga.events.base import DomainEvent


@runtime_checkable
class FlexibleEventHandler(Protocol):
    """
    Protocol for handlers that may be sync or async.

    Accepted by EventBus.subscribe; the bus normalises it with HandlerAdapter.
    """

    def handle(self, event: DomainEvent) -> Awaitable[None] | None:
        """Handle event, returning Awaitable if async."""
        ...


class EventSubscriber(ABC):
    """
    Abstract base class for event subscribers.

    Subscribers declare which event types they handle, so they can be
    registered in one call with EventBus.subscribe_all.
    """

    @abstractmethod
    def subscribed_to(self) -> list[type[DomainEvent]]:
        """Return list of event types this subscriber handles."""
        pass

    @abstractmethod
    async def handle(self, event: DomainEvent) -> None:
        """Handle a domain event."""
        pass


__all__ = [
    "FlexibleEventHandler",
    "EventSubscriber",
]
