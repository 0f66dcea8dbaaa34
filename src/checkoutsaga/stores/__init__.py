"""
Order stores and event logs.

The SQLite implementation needs the optional ``aiosqlite`` dependency
(``pip install checkout-saga[sqlite]``) and is imported from
``checkoutsaga.stores.sqlite``.
"""

from checkoutsaga.stores.in_memory import InMemoryEventLog, InMemoryOrderStore
from checkoutsaga.stores.interface import EventLog, OrderRecord, OrderStore, StoredEvent

__all__ = [
    "EventLog",
    "InMemoryEventLog",
    "InMemoryOrderStore",
    "OrderRecord",
    "OrderStore",
    "StoredEvent",
]
