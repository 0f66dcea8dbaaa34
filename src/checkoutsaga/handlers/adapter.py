"""
Handler adapter for normalizing event handlers.

The bus accepts handler objects with a sync or async ``handle()`` method as
well as plain sync or async callables; HandlerAdapter turns each of them into
one awaitable ``handle(event)`` so delivery code never inspects handler types.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from checkoutsaga.events.base import DomainEvent

logger = logging.getLogger(__name__)

AsyncHandlerFunc = Callable[[DomainEvent], Awaitable[None]]


def get_handler_name(handler: Any) -> str:
    """
    Get a descriptive name for a handler for logging and dead-letter entries.

    Class instances are named by their class, functions by ``__qualname__``.
    """
    if inspect.isfunction(handler) or inspect.ismethod(handler):
        return str(handler.__qualname__)
    if hasattr(handler, "__class__") and handler.__class__.__name__ != "function":
        return str(handler.__class__.__name__)
    if hasattr(handler, "__name__"):
        return str(handler.__name__)
    return repr(handler)


class HandlerAdapter:
    """
    Adapter that normalizes event handlers to a consistent async interface.

    Accepts:
    - Objects with async handle() method
    - Objects with sync handle() method
    - Async callable functions
    - Sync callable functions

    Example:
        >>> adapter = HandlerAdapter(lambda event: received.append(event))
        >>> await adapter.handle(event)

    Attributes:
        original: The original unwrapped handler
        name: Descriptive name for logging
    """

    def __init__(self, handler: Any, name: str | None = None) -> None:
        """
        Raises:
            TypeError: If handler doesn't have handle() method and isn't callable
        """
        self._original = handler
        self._name = name or get_handler_name(handler)
        self._async_handler = self._normalize(handler)

    def _normalize(self, handler: Any) -> AsyncHandlerFunc:
        if hasattr(handler, "handle"):
            target = handler.handle
        elif callable(handler):
            target = handler
        else:
            raise TypeError(
                f"Handler must have a handle() method or be callable, got {type(handler)}"
            )

        if inspect.iscoroutinefunction(target):
            return target  # type: ignore[no-any-return]

        async def async_wrapper(event: DomainEvent) -> None:
            result = target(event)
            # A sync callable may still hand back a coroutine
            if asyncio.iscoroutine(result):
                await result

        return async_wrapper

    @property
    def original(self) -> Any:
        """Get the original unwrapped handler."""
        return self._original

    @property
    def name(self) -> str:
        """Get the handler's descriptive name."""
        return self._name

    async def handle(self, event: DomainEvent) -> None:
        await self._async_handler(event)

    def __eq__(self, other: object) -> bool:
        """Check equality based on original handler identity."""
        if isinstance(other, HandlerAdapter):
            return self._original is other._original
        return self._original is other

    def __hash__(self) -> int:
        return id(self._original)

    def __repr__(self) -> str:
        return f"HandlerAdapter({self._name})"


__all__ = [
    "AsyncHandlerFunc",
    "HandlerAdapter",
    "get_handler_name",
]
