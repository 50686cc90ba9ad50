"""
Abstract base class for record stores.

The orchestrator only talks to this interface; storage mechanics stay
behind it. Implementations raise StorageIOError for failed operations
and StorageConnectionError when the store cannot be opened.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from ..models import Person


@dataclass
class Page:
    """One page of records plus the navigation metadata."""

    items: list[Person]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def info(self) -> str:
        return f"Page {self.page} of {self.total_pages} (Total: {self.total_count})"


@dataclass
class FailedAttempt:
    """Outcome of a failed sync attempt, persisted in bulk after a batch."""

    reason: str
    needs_correction: bool = False


class RecordStore(ABC):
    """
    Durable local storage for Person records.

    Implementations must support:
    - CRUD on single records
    - Unsynced and paginated queries
    - Transactional bulk writes (insert, mark synced, mark failed, replace)
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create the schema."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass

    async def __aenter__(self) -> RecordStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @abstractmethod
    async def insert(self, person: Person) -> Person:
        """Insert a record and return it with its assigned local_id."""
        pass

    @abstractmethod
    async def get_by_id(self, local_id: int) -> Person | None:
        """Get a record by local id, or None."""
        pass

    @abstractmethod
    async def update(self, person: Person) -> None:
        """Persist a record's mutable fields. created_at is never rewritten."""
        pass

    @abstractmethod
    async def query_unsynced(self) -> list[Person]:
        """All records with is_synced = false, in insertion order."""
        pass

    @abstractmethod
    async def query_all(self) -> list[Person]:
        """All records, in insertion order."""
        pass

    @abstractmethod
    async def query_paginated(self, page: int, page_size: int) -> tuple[list[Person], int]:
        """One page of records (1-based) and the total record count."""
        pass

    @abstractmethod
    async def bulk_insert(self, people: Sequence[Person]) -> None:
        """Insert many records in a single transaction."""
        pass

    @abstractmethod
    async def bulk_mark_synced(
        self,
        local_ids: Sequence[int],
        sync_time: datetime,
        server_ids: Mapping[int, int] | None = None,
    ) -> None:
        """Mark many records synced in one batched write.

        Args:
            local_ids: Records to mark
            sync_time: Attempt time to record (never moves a record back in time)
            server_ids: Optional newly assigned server ids by local id
        """
        pass

    @abstractmethod
    async def bulk_mark_failed(
        self,
        failures: Mapping[int, FailedAttempt],
        attempt_time: datetime,
    ) -> None:
        """Record many failed attempts in one batched write."""
        pass

    @abstractmethod
    async def mark_synced(self, local_id: int, server_id: int, sync_time: datetime) -> bool:
        """Mark one record synced. No-op (False) if already synced or missing."""
        pass

    @abstractmethod
    async def replace_all(self, people: Sequence[Person]) -> None:
        """Clear the store and insert the given records in one transaction."""
        pass

    @abstractmethod
    async def clear_all(self) -> int:
        """Delete every record. Returns the number removed."""
        pass

    @abstractmethod
    async def randomize_all(self) -> list[Person]:
        """Rewrite every record's age and weight with random values.

        Changed records become unsynced so the next change sync pushes them.
        """
        pass
