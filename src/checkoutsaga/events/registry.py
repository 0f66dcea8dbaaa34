"""
Event registry for mapping event type names to event classes.

The event log stores events as JSON with their ``event_type`` string; the
registry turns that string back into the pydantic class when events are read
from a durable store.
"""

import logging
from collections.abc import Iterable, Iterator
from typing import Any, TypeVar

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.saga import SAGA_EVENT_TYPES
from checkoutsaga.exceptions import SerializationError

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound=DomainEvent)


class EventTypeNotFoundError(KeyError):
    """
    Raised when attempting to look up an unregistered event type.
    """

    def __init__(self, event_type: str, available_types: list[str]) -> None:
        self.event_type = event_type
        self.available_types = available_types
        available = ", ".join(sorted(available_types)) or "(none)"
        super().__init__(f"Unknown event type: '{event_type}'. Registered types: {available}")


class DuplicateEventTypeError(ValueError):
    """
    Raised when attempting to register a different class with an existing event type name.
    """

    def __init__(
        self,
        event_type: str,
        existing_class: type[DomainEvent],
        new_class: type[DomainEvent],
    ) -> None:
        self.event_type = event_type
        self.existing_class = existing_class
        self.new_class = new_class
        super().__init__(
            f"Event type '{event_type}' is already registered to {existing_class.__name__}. "
            f"Cannot register {new_class.__name__} with the same type name."
        )


class EventRegistry:
    """
    Registry for mapping event type names to event classes.

    Only used from the event loop thread, so no locking is done.

    Example:
        >>> registry = EventRegistry()
        >>> registry.register(OrderPlaced)
        >>> registry.get("OrderPlaced")
        <class 'checkoutsaga.events.saga.OrderPlaced'>
    """

    def __init__(self, event_classes: Iterable[type[DomainEvent]] = ()) -> None:
        self._registry: dict[str, type[DomainEvent]] = {}
        for event_class in event_classes:
            self.register(event_class)

    def register(self, event_class: type[TEvent]) -> type[TEvent]:
        """
        Register an event class under its class name.

        Returns:
            The registered event class (enables use as decorator)

        Raises:
            DuplicateEventTypeError: If the name is already registered to a different class
        """
        event_type = event_class.__name__
        existing = self._registry.get(event_type)
        if existing is not None:
            if existing is not event_class:
                raise DuplicateEventTypeError(event_type, existing, event_class)
            return event_class

        self._registry[event_type] = event_class
        logger.debug(
            "Registered event type '%s'",
            event_type,
            extra={"event_type": event_type, "event_class": event_class.__qualname__},
        )
        return event_class

    def get(self, event_type: str) -> type[DomainEvent]:
        """
        Get event class by type name.

        Raises:
            EventTypeNotFoundError: If event type is not registered
        """
        if event_type not in self._registry:
            raise EventTypeNotFoundError(event_type, list(self._registry))
        return self._registry[event_type]

    def get_or_none(self, event_type: str) -> type[DomainEvent] | None:
        return self._registry.get(event_type)

    def list_types(self) -> list[str]:
        """Sorted list of registered event type names."""
        return sorted(self._registry)

    def deserialize(self, data: dict[str, Any]) -> DomainEvent:
        """
        Rebuild an event from its JSON dictionary.

        Raises:
            SerializationError: If the type is unknown or the payload is invalid
        """
        event_type = data.get("event_type", "")
        event_class = self.get_or_none(event_type)
        if event_class is None:
            raise SerializationError(event_type or "<missing>", "event type is not registered")
        try:
            return event_class.from_dict(data)
        except ValueError as e:
            # pydantic's ValidationError is a ValueError
            raise SerializationError(event_type, str(e)) from e

    def __len__(self) -> int:
        return len(self._registry)

    def __bool__(self) -> bool:
        """Registry is always truthy, even when empty."""
        return True

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._registry

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._registry))


default_registry = EventRegistry(SAGA_EVENT_TYPES)
"""Registry holding every saga event kind."""


__all__ = [
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
]
