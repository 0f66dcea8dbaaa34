"""Event bus for the checkout saga."""

from checkoutsaga.bus.interface import EventBus, EventHandlerFunc
from checkoutsaga.bus.memory import InMemoryEventBus
from checkoutsaga.bus.retry import RetryConfig, calculate_backoff

__all__ = [
    "EventBus",
    "EventHandlerFunc",
    "InMemoryEventBus",
    "RetryConfig",
    "calculate_backoff",
]
