"""
SQLite record store.

Single-file durable storage for Person records using aiosqlite. All
timestamps are stored as fixed-width ISO 8601 UTC strings so they sort
and compare correctly in SQL.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StorageConnectionError, StorageIOError
from ..models import Person, parse_timestamp
from .base import FailedAttempt, RecordStore

logger = logging.getLogger(__name__)

# Columns for standard read operations
PERSON_READ_COLUMNS = (
    "local_id",
    "server_id",
    "name",
    "last_name",
    "age",
    "weight",
    "created_at",
    "last_sync_attempt",
    "is_synced",
    "last_error",
    "needs_correction",
)

_SELECT_PEOPLE = f"SELECT {', '.join(PERSON_READ_COLUMNS)} FROM people"

_INSERT_PERSON = """
    INSERT INTO people (
        server_id, name, last_name, age, weight, created_at,
        last_sync_attempt, is_synced, last_error, needs_correction
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

# Keeps last_sync_attempt monotonic: the stored value only moves forward.
_ADVANCE_ATTEMPT = (
    "last_sync_attempt = CASE WHEN last_sync_attempt IS NULL OR last_sync_attempt < ? "
    "THEN ? ELSE last_sync_attempt END"
)

# Stay well below SQLite's host parameter limit
_MAX_IDS_PER_STATEMENT = 500


def _to_db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _insert_params(person: Person) -> tuple[Any, ...]:
    return (
        person.server_id,
        person.name,
        person.last_name,
        person.age,
        person.weight,
        _to_db_time(person.created_at),
        _to_db_time(person.last_sync_attempt),
        int(person.is_synced),
        person.last_error,
        int(person.needs_correction),
    )


def _row_to_person(row: Sequence[Any]) -> Person:
    return Person(
        local_id=row[0],
        server_id=row[1],
        name=row[2],
        last_name=row[3],
        age=row[4],
        weight=row[5],
        created_at=parse_timestamp(row[6]) or datetime.now(UTC),
        last_sync_attempt=parse_timestamp(row[7]),
        is_synced=bool(row[8]),
        last_error=row[9],
        needs_correction=bool(row[10]),
    )


@dataclass
class SQLiteStoreConfig:
    """Configuration for the SQLite record store."""

    db_path: str | Path = ":memory:"

    @classmethod
    def from_env(cls) -> SQLiteStoreConfig:
        """Create config from environment variables."""
        import os

        return cls(db_path=os.environ.get("PERSON_SYNC_DB_PATH", ":memory:"))


class SQLiteRecordStore(RecordStore):
    """
    SQLite implementation of the record store.

    Features:
    - Single file database (or :memory: for tests)
    - Autoincrement local ids preserving insertion order
    - Bulk operations committed as one transaction
    """

    def __init__(self, config: SQLiteStoreConfig | None = None):
        self.config = config or SQLiteStoreConfig()
        self.conn: aiosqlite.Connection | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: SQLiteStoreConfig | None = None) -> SQLiteRecordStore:
        """Create and initialize a SQLite record store."""
        if config is None:
            config = SQLiteStoreConfig.from_env()

        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Initialize SQLite connection and schema."""
        if self._initialized:
            return

        try:
            self.conn = await aiosqlite.connect(str(self.config.db_path))

            await self.conn.execute("""
                CREATE TABLE IF NOT EXISTS people (
                    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    server_id INTEGER,
                    name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    age INTEGER NOT NULL,
                    weight REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    last_sync_attempt TEXT,
                    is_synced INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    needs_correction INTEGER NOT NULL DEFAULT 0
                )
            """)
            await self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_people_unsynced ON people(is_synced, local_id)"
            )
            await self.conn.commit()
            self._initialized = True
            logger.info(f"SQLite record store initialized: {self.config.db_path}")

        except Exception as e:
            raise StorageConnectionError(str(self.config.db_path), e) from e

    async def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_conn(self, operation: str) -> aiosqlite.Connection:
        if not self._initialized or self.conn is None:
            raise StorageIOError(operation, cause=RuntimeError("Not initialized"))
        return self.conn

    # =========================================================================
    # Single record operations
    # =========================================================================

    async def insert(self, person: Person) -> Person:
        conn = self._require_conn("insert")
        try:
            cursor = await conn.execute(_INSERT_PERSON, _insert_params(person))
            person.local_id = cursor.lastrowid
            await cursor.close()
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("insert", cause=e) from e
        return person

    async def get_by_id(self, local_id: int) -> Person | None:
        conn = self._require_conn("get_by_id")
        try:
            async with conn.execute(f"{_SELECT_PEOPLE} WHERE local_id = ?", (local_id,)) as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            raise StorageIOError("get_by_id", cause=e) from e
        return _row_to_person(row) if row else None

    async def update(self, person: Person) -> None:
        if person.local_id is None:
            raise StorageIOError("update", cause=ValueError("Person has no local_id"))
        conn = self._require_conn("update")
        attempt = _to_db_time(person.last_sync_attempt)
        try:
            await conn.execute(
                f"""
                UPDATE people SET
                    server_id = ?, name = ?, last_name = ?, age = ?, weight = ?,
                    is_synced = ?, last_error = ?, needs_correction = ?,
                    {_ADVANCE_ATTEMPT}
                WHERE local_id = ?
                """,
                (
                    person.server_id,
                    person.name,
                    person.last_name,
                    person.age,
                    person.weight,
                    int(person.is_synced),
                    person.last_error,
                    int(person.needs_correction),
                    attempt,
                    attempt,
                    person.local_id,
                ),
            )
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("update", cause=e) from e

    async def mark_synced(self, local_id: int, server_id: int, sync_time: datetime) -> bool:
        person = await self.get_by_id(local_id)
        if person is None or person.is_synced:
            return False

        conn = self._require_conn("mark_synced")
        attempt = _to_db_time(sync_time)
        try:
            await conn.execute(
                f"""
                UPDATE people SET
                    is_synced = 1, server_id = ?, last_error = NULL, needs_correction = 0,
                    {_ADVANCE_ATTEMPT}
                WHERE local_id = ? AND is_synced = 0
                """,
                (server_id, attempt, attempt, local_id),
            )
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("mark_synced", cause=e) from e

        logger.debug(f"Marked person {local_id} as synced with server ID {server_id}")
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    async def _fetch_people(self, operation: str, sql: str, params: tuple = ()) -> list[Person]:
        conn = self._require_conn(operation)
        try:
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageIOError(operation, cause=e) from e
        return [_row_to_person(row) for row in rows]

    async def query_unsynced(self) -> list[Person]:
        return await self._fetch_people(
            "query_unsynced", f"{_SELECT_PEOPLE} WHERE is_synced = 0 ORDER BY local_id"
        )

    async def query_all(self) -> list[Person]:
        return await self._fetch_people("query_all", f"{_SELECT_PEOPLE} ORDER BY local_id")

    async def query_paginated(self, page: int, page_size: int) -> tuple[list[Person], int]:
        if page < 1 or page_size < 1:
            raise StorageIOError(
                "query_paginated", cause=ValueError("page and page_size must be >= 1")
            )
        conn = self._require_conn("query_paginated")
        try:
            async with conn.execute("SELECT COUNT(*) FROM people") as cursor:
                row = await cursor.fetchone()
                total = row[0] if row else 0
        except Exception as e:
            raise StorageIOError("query_paginated", cause=e) from e

        items = await self._fetch_people(
            "query_paginated",
            f"{_SELECT_PEOPLE} ORDER BY local_id LIMIT ? OFFSET ?",
            (page_size, (page - 1) * page_size),
        )
        return items, total

    # =========================================================================
    # Bulk operations
    # =========================================================================

    async def bulk_insert(self, people: Sequence[Person]) -> None:
        if not people:
            return
        conn = self._require_conn("bulk_insert")
        try:
            await conn.executemany(_INSERT_PERSON, [_insert_params(p) for p in people])
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("bulk_insert", cause=e) from e
        logger.debug(f"Bulk inserted {len(people)} people")

    async def bulk_mark_synced(
        self,
        local_ids: Sequence[int],
        sync_time: datetime,
        server_ids: Mapping[int, int] | None = None,
    ) -> None:
        ids = list(local_ids)
        if not ids:
            return
        conn = self._require_conn("bulk_mark_synced")
        attempt = _to_db_time(sync_time)
        try:
            if server_ids:
                await conn.executemany(
                    "UPDATE people SET server_id = ? WHERE local_id = ?",
                    [(server_id, local_id) for local_id, server_id in server_ids.items()],
                )
            for start in range(0, len(ids), _MAX_IDS_PER_STATEMENT):
                chunk = ids[start : start + _MAX_IDS_PER_STATEMENT]
                placeholders = ", ".join("?" for _ in chunk)
                await conn.execute(
                    f"""
                    UPDATE people SET
                        is_synced = 1, last_error = NULL, needs_correction = 0,
                        {_ADVANCE_ATTEMPT}
                    WHERE local_id IN ({placeholders})
                    """,
                    (attempt, attempt, *chunk),
                )
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("bulk_mark_synced", cause=e) from e
        logger.debug(f"Bulk marked {len(ids)} people as synced")

    async def bulk_mark_failed(
        self,
        failures: Mapping[int, FailedAttempt],
        attempt_time: datetime,
    ) -> None:
        if not failures:
            return
        conn = self._require_conn("bulk_mark_failed")
        attempt = _to_db_time(attempt_time)
        try:
            await conn.executemany(
                f"""
                UPDATE people SET
                    last_error = ?, needs_correction = ?,
                    {_ADVANCE_ATTEMPT}
                WHERE local_id = ? AND is_synced = 0
                """,
                [
                    (failure.reason, int(failure.needs_correction), attempt, attempt, local_id)
                    for local_id, failure in failures.items()
                ],
            )
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("bulk_mark_failed", cause=e) from e

    async def replace_all(self, people: Sequence[Person]) -> None:
        conn = self._require_conn("replace_all")
        try:
            await conn.execute("DELETE FROM people")
            await conn.executemany(_INSERT_PERSON, [_insert_params(p) for p in people])
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("replace_all", cause=e) from e
        logger.info(f"Replaced local store with {len(people)} people")

    async def clear_all(self) -> int:
        conn = self._require_conn("clear_all")
        try:
            cursor = await conn.execute("DELETE FROM people")
            removed = cursor.rowcount
            await cursor.close()
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("clear_all", cause=e) from e
        logger.info(f"Cleared {removed} people from SQLite")
        return removed

    async def randomize_all(self) -> list[Person]:
        people = await self.query_all()
        conn = self._require_conn("randomize_all")
        for person in people:
            person.age = random.randint(18, 80)
            person.weight = round(random.uniform(45.0, 120.0), 1)
            person.is_synced = False
        try:
            await conn.executemany(
                "UPDATE people SET age = ?, weight = ?, is_synced = 0 WHERE local_id = ?",
                [(p.age, p.weight, p.local_id) for p in people],
            )
            await conn.commit()
        except Exception as e:
            await conn.rollback()
            raise StorageIOError("randomize_all", cause=e) from e
        return people
