"""
SQLite order store and event log.

Durable store using SQLite with async support via aiosqlite. Order state and
the event log live in the same database, so a commit updates the order row
and inserts its events in one transaction.

SQLite-specific adaptations:
- UUIDs stored as TEXT (36 characters, hyphenated format)
- Timestamps stored as TEXT in ISO 8601 format
- State and event payloads stored as JSON TEXT
- Global position uses INTEGER PRIMARY KEY AUTOINCREMENT
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import aiosqlite

from checkoutsaga.events.base import DomainEvent
from checkoutsaga.events.registry import EventRegistry, default_registry
from checkoutsaga.exceptions import ConcurrentModificationError
from checkoutsaga.observability import (
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
    ATTR_ORDER_ID,
    Tracer,
    create_tracer,
)
from checkoutsaga.serialization import json_dumps, json_loads
from checkoutsaga.stores.interface import EventLog, OrderRecord, OrderStore, StoredEvent

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS orders (
    order_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    state TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS saga_events (
    global_position INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    order_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    stored_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_saga_events_order_id ON saga_events (order_id);
CREATE INDEX IF NOT EXISTS idx_saga_events_event_type ON saga_events (event_type);
"""

_INSERT_EVENT = """
INSERT OR IGNORE INTO saga_events (event_id, event_type, order_id, payload, stored_at)
VALUES (?, ?, ?, ?, ?)
"""


class SQLiteOrderStore(OrderStore):
    """
    SQLite implementation of the order store.

    One aiosqlite connection serves both the order table and the event log.
    Transactions on that connection are serialised by an asyncio lock.

    Attributes:
        _database: Path to SQLite file or ':memory:' for in-memory database
        _event_registry: Registry for event type lookup during deserialization
        _wal_mode: Whether WAL mode is enabled
        _busy_timeout: Timeout in ms for busy database
        _connection: The aiosqlite connection (set after connect/initialize)

    Example:
        >>> async with SQLiteOrderStore(":memory:") as store:
        ...     await store.initialize()
        ...     version = await store.commit(order_id, 0, order.to_record(), [placed])
    """

    def __init__(
        self,
        database: str,
        event_registry: EventRegistry | None = None,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite order store.

        Args:
            database: Path to SQLite database file or ':memory:' for in-memory
            event_registry: Event registry for deserialization (defaults to module registry)
            wal_mode: If True, enable WAL mode for better concurrency (default: True)
            busy_timeout: Timeout in milliseconds when database is locked (default: 5000)
            tracer: Optional custom Tracer instance
            enable_tracing: If True, emit traces. Ignored if tracer is provided.
        """
        self._database = database
        self._event_registry = event_registry if event_registry is not None else default_registry
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._event_log = SQLiteEventLog(self)

    async def __aenter__(self) -> SQLiteOrderStore:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        """Open the database connection and configure settings."""
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """
        Close the database connection.

        Safe to call multiple times.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create the orders and saga_events tables if they don't exist.

        Idempotent; connects first when needed.
        """
        if self._connection is None:
            await self._connect()
        conn = self._ensure_connected()
        await conn.executescript(SCHEMA)
        await conn.commit()
        logger.info("Initialized SQLite order store schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        """
        Raises:
            RuntimeError: If not connected
        """
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    @property
    def database(self) -> str:
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def event_log(self) -> SQLiteEventLog:
        return self._event_log

    async def get(self, order_id: UUID) -> OrderRecord | None:
        conn = self._ensure_connected()
        async with self._lock:
            cursor = await conn.execute(
                "SELECT order_id, version, state, updated_at FROM orders WHERE order_id = ?",
                (str(order_id),),
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return OrderRecord(
            order_id=UUID(row["order_id"]),
            version=row["version"],
            state=json_loads(row["state"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

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
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            conn = self._ensure_connected()
            async with self._lock:
                return await self._do_commit(conn, order_id, expected_version, state, events)

    async def _do_commit(
        self,
        conn: aiosqlite.Connection,
        order_id: UUID,
        expected_version: int,
        state: dict[str, Any],
        events: Sequence[DomainEvent],
    ) -> int:
        now = datetime.now(UTC).isoformat()
        try:
            current_version = await self._current_version(conn, order_id)
            if current_version != expected_version:
                raise ConcurrentModificationError(order_id, expected_version, current_version)

            new_version = current_version + 1
            if current_version == 0:
                await conn.execute(
                    "INSERT INTO orders (order_id, version, state, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (str(order_id), new_version, json_dumps(state), now),
                )
            else:
                cursor = await conn.execute(
                    "UPDATE orders SET version = ?, state = ?, updated_at = ? "
                    "WHERE order_id = ? AND version = ?",
                    (new_version, json_dumps(state), now, str(order_id), expected_version),
                )
                if cursor.rowcount != 1:
                    raise ConcurrentModificationError(
                        order_id, expected_version, await self._current_version(conn, order_id)
                    )

            await self._event_log._insert(conn, events, now)
            await conn.commit()
        except ConcurrentModificationError:
            await conn.rollback()
            logger.debug(
                "Version conflict for order %s: expected=%d",
                order_id,
                expected_version,
                extra={"order_id": str(order_id), "expected_version": expected_version},
            )
            raise
        except aiosqlite.IntegrityError as e:
            # Another writer inserted the order row first
            await conn.rollback()
            actual = await self._current_version(conn, order_id)
            raise ConcurrentModificationError(order_id, expected_version, actual) from e
        except Exception:
            await conn.rollback()
            raise

        return new_version

    @staticmethod
    async def _current_version(conn: aiosqlite.Connection, order_id: UUID) -> int:
        cursor = await conn.execute(
            "SELECT version FROM orders WHERE order_id = ?",
            (str(order_id),),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def _deserialize_event(self, payload: str) -> DomainEvent:
        return self._event_registry.deserialize(json_loads(payload))


class SQLiteEventLog(EventLog):
    """
    Event log stored in the saga_events table of a SQLiteOrderStore.

    Shares the store's connection and lock; open and initialize the store
    before using its log.
    """

    def __init__(self, store: SQLiteOrderStore) -> None:
        self._store = store

    async def _insert(
        self,
        conn: aiosqlite.Connection,
        events: Sequence[DomainEvent],
        stored_at: str,
    ) -> list[tuple[DomainEvent, int]]:
        """Insert events inside the caller's transaction; returns the newly logged ones."""
        inserted: list[tuple[DomainEvent, int]] = []
        for event in events:
            cursor = await conn.execute(
                _INSERT_EVENT,
                (
                    str(event.event_id),
                    event.event_type,
                    str(event.order_id),
                    json_dumps(event.to_dict()),
                    stored_at,
                ),
            )
            if cursor.rowcount == 1 and cursor.lastrowid:
                inserted.append((event, cursor.lastrowid))
            else:
                logger.debug("Event %s already logged, skipping", event.event_id)
        return inserted

    async def append(self, events: Sequence[DomainEvent]) -> list[StoredEvent]:
        if not events:
            return []

        store = self._store
        conn = store._ensure_connected()
        now = datetime.now(UTC)
        with store._tracer.span(
            "checkoutsaga.event_log.append",
            {ATTR_EVENT_COUNT: len(events), ATTR_DB_SYSTEM: "sqlite"},
        ):
            async with store._lock:
                try:
                    inserted = await self._insert(conn, events, now.isoformat())
                    await conn.commit()
                except Exception:
                    await conn.rollback()
                    raise

        return [
            StoredEvent(event=event, global_position=position, stored_at=now)
            for event, position in inserted
        ]

    async def read(
        self,
        from_position: int = 0,
        event_types: Sequence[type[DomainEvent]] | None = None,
        limit: int | None = None,
    ) -> list[StoredEvent]:
        query = (
            "SELECT global_position, payload, stored_at FROM saga_events "
            "WHERE global_position > ?"
        )
        params: list[Any] = [from_position]
        if event_types is not None:
            names = [t.__name__ for t in event_types]
            if not names:
                return []
            query += f" AND event_type IN ({', '.join('?' for _ in names)})"
            params.extend(names)
        query += " ORDER BY global_position ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return await self._fetch(query, params)

    async def events_for_order(self, order_id: UUID) -> list[StoredEvent]:
        return await self._fetch(
            "SELECT global_position, payload, stored_at FROM saga_events "
            "WHERE order_id = ? ORDER BY global_position ASC",
            [str(order_id)],
        )

    async def contains(self, event_id: UUID) -> bool:
        conn = self._store._ensure_connected()
        async with self._store._lock:
            cursor = await conn.execute(
                "SELECT 1 FROM saga_events WHERE event_id = ?",
                (str(event_id),),
            )
            return await cursor.fetchone() is not None

    async def get_global_position(self) -> int:
        conn = self._store._ensure_connected()
        async with self._store._lock:
            cursor = await conn.execute("SELECT COALESCE(MAX(global_position), 0) FROM saga_events")
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _fetch(self, query: str, params: list[Any]) -> list[StoredEvent]:
        conn = self._store._ensure_connected()
        async with self._store._lock:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()

        return [
            StoredEvent(
                event=self._store._deserialize_event(row["payload"]),
                global_position=row["global_position"],
                stored_at=datetime.fromisoformat(row["stored_at"]),
            )
            for row in rows
        ]


__all__ = [
    "SCHEMA",
    "SQLiteEventLog",
    "SQLiteOrderStore",
]
