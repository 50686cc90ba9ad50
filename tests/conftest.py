"""
Shared test configuration and fixtures.

Provides an in-memory SQLite record store and a scriptable fake sync
client, so orchestrator tests run without a server.
"""

import asyncio
from collections.abc import Callable

import pytest

from person_sync.config import SyncConfig
from person_sync.connectivity import ConnectivityMonitor
from person_sync.models import Person
from person_sync.store.sqlite import SQLiteRecordStore, SQLiteStoreConfig
from person_sync.sync.orchestrator import SyncOrchestrator
from person_sync.transport.base import RemoteAck, RemotePerson, SyncClient

# Decides the outcome of one push: return an ack or raise
Responder = Callable[[Person], RemoteAck]


class FakeSyncClient(SyncClient):
    """
    Fake sync client for testing without a server.

    Assigns server ids from a counter, records every call and tracks how
    many calls were in flight at once.
    """

    def __init__(self, delay: float = 0.0, first_server_id: int = 101):
        self.endpoint = "fake://person"
        self.delay = delay
        self.responder: Responder | None = None
        self.remote: list[RemotePerson] = []
        self.fetch_error: Exception | None = None
        self.ping_error: Exception | None = None

        self.saved: list[Person] = []
        self.updated: list[Person] = []
        self.calls_by_local_id: dict[int, int] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        self._next_id = first_server_id

    @property
    def call_count(self) -> int:
        return len(self.saved) + len(self.updated)

    async def _call(self, person: Person) -> RemoteAck:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if person.local_id is not None:
                self.calls_by_local_id[person.local_id] = (
                    self.calls_by_local_id.get(person.local_id, 0) + 1
                )
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if self.responder is not None:
                return self.responder(person)
            if person.server_id is not None:
                return RemoteAck(accepted=True, assigned_id=person.server_id)
            assigned = self._next_id
            self._next_id += 1
            return RemoteAck(accepted=True, assigned_id=assigned)
        finally:
            self.in_flight -= 1

    async def save(self, person: Person) -> RemoteAck:
        self.saved.append(person)
        return await self._call(person)

    async def update(self, person: Person) -> RemoteAck:
        self.updated.append(person)
        return await self._call(person)

    async def fetch_all(self) -> list[RemotePerson]:
        await asyncio.sleep(self.delay)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.remote)

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
async def store():
    """Fixture providing an initialized in-memory SQLite record store."""
    store = await SQLiteRecordStore.create(SQLiteStoreConfig(db_path=":memory:"))
    yield store
    await store.close()


@pytest.fixture
def client():
    return FakeSyncClient()


@pytest.fixture
def client_factory():
    """Fixture returning the FakeSyncClient class for tests needing custom delays."""
    return FakeSyncClient


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
async def orchestrator(store, client, connectivity):
    """Fixture providing an orchestrator wired to the fake client."""
    orchestrator = SyncOrchestrator(
        store=store,
        client=client,
        connectivity=connectivity,
        config=SyncConfig(batch_size=3, max_concurrency=2, page_size=5),
    )
    await orchestrator.load()
    yield orchestrator
    await orchestrator.close()
