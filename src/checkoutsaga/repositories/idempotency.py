"""
Idempotency keys for side effects that must happen once.

Handlers claim a key before calling an external service and release it if
the call raises, so a redelivered event can try again while a completed
call is never repeated.
"""

import asyncio
from typing import Protocol, runtime_checkable


@runtime_checkable
class IdempotencyStore(Protocol):
    async def claim(self, key: str) -> bool:
        """Claim a key. Returns False if it was already claimed."""
        ...

    async def release(self, key: str) -> None: ...

    async def contains(self, key: str) -> bool: ...


class InMemoryIdempotencyStore:
    """In-memory set of claimed keys."""

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = asyncio.Lock()

    async def claim(self, key: str) -> bool:
        async with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._keys.discard(key)

    async def contains(self, key: str) -> bool:
        async with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


__all__ = [
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
]
