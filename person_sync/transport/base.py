"""
Abstract base class for remote sync clients.

Both bindings (gRPC and REST) expose the same semantics: save/update a
single record, fetch the full remote set, and ping. Business rejections
come back as RemoteAck(accepted=False); transport failures are raised as
TransportError with a category, never returned as None.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from ..models import Person, utc_now


@dataclass
class RemoteAck:
    """Server acknowledgment of a save or update."""

    accepted: bool
    assigned_id: int | None = None
    message: str | None = None


@dataclass
class RemotePerson:
    """A record as held by the remote authority."""

    server_id: int
    name: str
    last_name: str
    age: int
    weight: float
    created_at: datetime | None = None
    synced_at: datetime | None = None

    def to_person(self) -> Person:
        """Convert to a local record marked as synced."""
        now = utc_now()
        return Person(
            server_id=self.server_id,
            name=self.name,
            last_name=self.last_name,
            age=self.age,
            weight=self.weight,
            created_at=self.created_at or now,
            last_sync_attempt=self.synced_at or now,
            is_synced=True,
        )


class SyncClient(ABC):
    """Remote transport used to push and pull person records."""

    #: Human-readable endpoint, used in logs and errors
    endpoint: str = ""

    @abstractmethod
    async def save(self, person: Person) -> RemoteAck:
        """Create the record remotely."""
        pass

    @abstractmethod
    async def update(self, person: Person) -> RemoteAck:
        """Update an already accepted record (identified by server_id)."""
        pass

    @abstractmethod
    async def fetch_all(self) -> list[RemotePerson]:
        """Fetch the complete remote record set."""
        pass

    @abstractmethod
    async def ping(self) -> None:
        """Raise TransportError if the server cannot be reached."""
        pass

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
        pass

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
