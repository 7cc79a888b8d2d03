"""
SQLite event store implementation.

Durable event store using SQLite through aiosqlite. Every process that
shares the database file sees the same streams, and the
``UNIQUE (aggregate_id, aggregate_type, version)`` constraint makes a
stale append fail even when two processes race. That is what keeps
inventory reservations linearizable per product without an in-process
mutex.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import aiosqlite
from pydantic import ValidationError

from orderflow.events.base import DomainEvent
from orderflow.events.registry import EventRegistry, default_registry
from orderflow.exceptions import OptimisticLockError, SerializationError
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
)
from orderflow.stores.interface import (
    AppendResult,
    EventStore,
    EventStream,
    StoredEvent,
    check_expected_version,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    global_position INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    aggregate_type TEXT NOT NULL,
    aggregate_id TEXT NOT NULL,
    actor_id TEXT,
    version INTEGER NOT NULL,
    occurred_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (aggregate_id, aggregate_type, version)
);

CREATE INDEX IF NOT EXISTS idx_events_aggregate
    ON events (aggregate_id, aggregate_type, version);

CREATE INDEX IF NOT EXISTS idx_events_type
    ON events (aggregate_type, global_position);
"""


class SQLiteEventStore(EventStore):
    """
    SQLite implementation of the event store.

    UUIDs and timestamps are stored as TEXT, payloads as JSON TEXT.
    Appends run inside ``BEGIN IMMEDIATE`` so the version read and the
    inserts hold SQLite's write lock together.

    Attributes:
        _database: Path to SQLite file or ':memory:'
        _event_registry: Registry for event type lookup during deserialization
        _wal_mode: Whether WAL mode is enabled
        _busy_timeout: Timeout in ms for a busy database

    Example:
        >>> async with SQLiteEventStore("orders.db") as store:
        ...     await store.initialize()
        ...     repo = AggregateRepository(store, OrderAggregate, "Order")
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
        self._database = database
        self._event_registry = event_registry or default_registry
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        # One connection is shared by every coroutine of this process
        self._write_lock = asyncio.Lock()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __aenter__(self) -> SQLiteEventStore:
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
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database, isolation_level=None)
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode and self._database != ":memory:":
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """Create the events table and indexes if they don't exist. Idempotent."""
        if self._connection is None:
            await self._connect()
        conn = self._ensure_connected()
        await conn.executescript(SCHEMA)
        await conn.commit()
        logger.info("Initialized SQLite event store schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    async def append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        """
        Append events to an aggregate's event stream in one transaction.

        Raises:
            OptimisticLockError: If expected version doesn't match current version
            RuntimeError: If not connected to database
        """
        if not events:
            return AppendResult(expected_version)

        with self._tracer.span(
            "orderflow.event_store.append_events",
            {
                ATTR_AGGREGATE_ID: str(aggregate_id),
                ATTR_AGGREGATE_TYPE: aggregate_type,
                ATTR_EVENT_COUNT: len(events),
                ATTR_EXPECTED_VERSION: expected_version,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            async with self._write_lock:
                return await self._do_append_events(
                    aggregate_id, aggregate_type, events, expected_version
                )

    async def _do_append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        conn = self._ensure_connected()

        try:
            await conn.execute("BEGIN IMMEDIATE")
            current_version = await self._current_version(conn, aggregate_id, aggregate_type)
            check_expected_version(aggregate_id, expected_version, current_version)

            new_version = current_version
            last_global_position = 0
            for event in events:
                cursor = await conn.execute(
                    "SELECT 1 FROM events WHERE event_id = ?",
                    (str(event.event_id),),
                )
                if await cursor.fetchone():
                    logger.debug("Event %s already exists, skipping", event.event_id)
                    continue

                new_version += 1
                cursor = await conn.execute(
                    """
                    INSERT INTO events (
                        event_id, event_type, aggregate_type, aggregate_id,
                        actor_id, version, occurred_at, payload, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(event.event_id),
                        event.event_type,
                        aggregate_type,
                        str(aggregate_id),
                        event.actor_id,
                        new_version,
                        event.occurred_at.isoformat(),
                        json.dumps(event.to_dict()),
                        datetime.now(UTC).isoformat(),
                    ),
                )
                last_global_position = cursor.lastrowid or 0

            await conn.commit()

        except OptimisticLockError:
            await conn.rollback()
            logger.debug(
                "Version conflict for %s/%s: expected=%d",
                aggregate_type,
                aggregate_id,
                expected_version,
            )
            raise
        except aiosqlite.IntegrityError as e:
            await conn.rollback()
            error_str = str(e).lower()
            if "unique" in error_str and "version" in error_str:
                actual_version = await self._current_version(conn, aggregate_id, aggregate_type)
                raise OptimisticLockError(aggregate_id, expected_version, actual_version) from e
            raise
        except Exception:
            await conn.rollback()
            raise

        logger.debug(
            "Appended %d events to %s/%s, new version: %d",
            len(events),
            aggregate_type,
            aggregate_id,
            new_version,
        )
        return AppendResult(new_version, last_global_position)

    async def _current_version(
        self,
        conn: aiosqlite.Connection,
        aggregate_id: UUID,
        aggregate_type: str,
    ) -> int:
        cursor = await conn.execute(
            """
            SELECT COALESCE(MAX(version), 0)
            FROM events
            WHERE aggregate_id = ? AND aggregate_type = ?
            """,
            (str(aggregate_id), aggregate_type),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def get_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str | None = None,
        from_version: int = 0,
    ) -> EventStream:
        conn = self._ensure_connected()

        query = (
            "SELECT event_type, version, payload, aggregate_type FROM events WHERE aggregate_id = ?"
        )
        params: list[Any] = [str(aggregate_id)]
        if aggregate_type is not None:
            query += " AND aggregate_type = ?"
            params.append(aggregate_type)
        query += " ORDER BY version ASC"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()

        events = [
            self._deserialize_event(row["event_type"], row["payload"])
            for row in rows
            if row["version"] > from_version
        ]
        resolved_type = aggregate_type or (rows[0]["aggregate_type"] if rows else "Unknown")
        version = max((row["version"] for row in rows), default=0)

        return EventStream(
            aggregate_id=aggregate_id,
            aggregate_type=resolved_type,
            events=events,
            version=version,
        )

    async def get_events_by_type(
        self,
        aggregate_type: str,
        from_timestamp: datetime | None = None,
    ) -> list[DomainEvent]:
        conn = self._ensure_connected()

        query = "SELECT event_type, payload FROM events WHERE aggregate_type = ?"
        params: list[Any] = [aggregate_type]
        if from_timestamp is not None:
            query += " AND occurred_at > ?"
            params.append(from_timestamp.isoformat())
        query += " ORDER BY global_position ASC"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._deserialize_event(row["event_type"], row["payload"]) for row in rows]

    async def read_all(
        self,
        after_position: int = 0,
        aggregate_types: Sequence[str] = (),
    ) -> list[StoredEvent]:
        conn = self._ensure_connected()

        query = "SELECT global_position, event_type, payload FROM events WHERE global_position > ?"
        params: list[Any] = [after_position]
        if aggregate_types:
            query += f" AND aggregate_type IN ({', '.join('?' for _ in aggregate_types)})"
            params.extend(aggregate_types)
        query += " ORDER BY global_position ASC"

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [
            StoredEvent(
                self._deserialize_event(row["event_type"], row["payload"]),
                row["global_position"],
            )
            for row in rows
        ]

    async def event_exists(self, event_id: UUID) -> bool:
        conn = self._ensure_connected()
        cursor = await conn.execute("SELECT 1 FROM events WHERE event_id = ?", (str(event_id),))
        return await cursor.fetchone() is not None

    async def get_global_position(self) -> int:
        conn = self._ensure_connected()
        cursor = await conn.execute("SELECT COALESCE(MAX(global_position), 0) FROM events")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def _deserialize_event(self, event_type: str, payload: str) -> DomainEvent:
        """
        Rebuild a domain event from its stored JSON payload.

        Raises:
            EventTypeNotFoundError: If event type is not registered
            SerializationError: If the payload doesn't match the event schema
        """
        event_class = self._event_registry.get(event_type)
        try:
            return event_class.model_validate(json.loads(payload))
        except (ValidationError, json.JSONDecodeError) as e:
            raise SerializationError(event_type, str(e)) from e
