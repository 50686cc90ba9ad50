"""
Tests for the REST sync client.

Runs against a real aiohttp server implementing the person REST API.
"""

import asyncio

import pytest
from aiohttp import test_utils, web

from person_sync.exceptions import TransportError, TransportErrorCategory
from person_sync.models import Person
from person_sync.transport.rest_client import RestSyncClient


class PersonApi:
    """In-memory person REST API with switchable failures."""

    def __init__(self):
        self.people: dict[int, dict] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.next_id = 1
        self.fail_status: int | None = None
        self.delay = 0.0

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self.middleware])
        app.router.add_post("/api/person/rest/create", self.create)
        app.router.add_put("/api/person/rest/update/{id}", self.update)
        app.router.add_get("/api/person/rest/all", self.all)
        app.router.add_get("/api/person/rest/ping", self.ping)
        return app

    @web.middleware
    async def middleware(self, request: web.Request, handler):
        body = await request.json() if request.can_read_body else None
        self.requests.append((request.method, request.path, body))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_status is not None:
            return web.Response(status=self.fail_status, text="boom")
        return await handler(request)

    async def create(self, request: web.Request) -> web.Response:
        body = await request.json()
        if body["age"] > 150:
            return web.json_response({"message": "Age out of range"}, status=400)
        person_id = self.next_id
        self.next_id += 1
        self.people[person_id] = {**body, "id": person_id}
        return web.json_response({"id": person_id}, status=201)

    async def update(self, request: web.Request) -> web.Response:
        body = await request.json()
        person_id = int(request.match_info["id"])
        if person_id not in self.people:
            return web.json_response({"error": "Not found"}, status=422)
        self.people[person_id].update(body)
        return web.json_response(self.people[person_id])

    async def all(self, request: web.Request) -> web.Response:
        # Numbers as strings, the way some deployments serialize them
        return web.json_response(
            [
                {
                    "id": str(person_id),
                    "name": data["name"],
                    "lastName": data["lastName"],
                    "age": str(data["age"]),
                    "weight": str(data["weight"]),
                    "createdAt": "2024-01-01T00:00:00Z",
                    "syncedAt": "2024-01-02T00:00:00Z",
                }
                for person_id, data in self.people.items()
            ]
        )

    async def ping(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})


@pytest.fixture
def api():
    return PersonApi()


@pytest.fixture
async def rest_client(api):
    """Fixture providing a client connected to a running PersonApi server."""
    server = test_utils.TestServer(api.app())
    await server.start_server()
    client = RestSyncClient(str(server.make_url("/api/person")), timeout=1.0)
    yield client
    await client.close()
    await server.close()


def _person(**kwargs) -> Person:
    defaults = {"name": "Ana", "last_name": "Lima", "age": 30, "weight": 60.5, "local_id": 1}
    defaults.update(kwargs)
    return Person(**defaults)


class TestSave:
    @pytest.mark.asyncio
    async def test_save_assigns_server_id(self, rest_client, api):
        ack = await rest_client.save(_person())

        assert ack.accepted is True
        assert ack.assigned_id == 1
        method, path, body = api.requests[0]
        assert (method, path) == ("POST", "/api/person/rest/create")
        assert body["lastName"] == "Lima"
        assert body["localId"] == "1"

    @pytest.mark.asyncio
    async def test_business_rejection_is_not_an_error(self, rest_client):
        """A 4xx answer is a rejection carrying the server's message."""
        ack = await rest_client.save(_person(age=200))

        assert ack.accepted is False
        assert ack.assigned_id is None
        assert ack.message == "Age out of range"


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_uses_server_id_in_path(self, rest_client, api):
        await rest_client.save(_person())

        ack = await rest_client.update(_person(server_id=1, age=31))

        assert ack.accepted is True
        assert ack.assigned_id == 1
        assert api.requests[-1][:2] == ("PUT", "/api/person/rest/update/1")
        assert api.people[1]["age"] == 31

    @pytest.mark.asyncio
    async def test_update_unknown_record_rejected(self, rest_client):
        ack = await rest_client.update(_person(server_id=77))
        assert ack.accepted is False
        assert ack.message == "Not found"

    @pytest.mark.asyncio
    async def test_update_requires_server_id(self, rest_client):
        with pytest.raises(ValueError):
            await rest_client.update(_person())


class TestFetchAll:
    @pytest.mark.asyncio
    async def test_numbers_as_strings(self, rest_client):
        await rest_client.save(_person(name="Bruno", age=41, weight=80.25))

        people = await rest_client.fetch_all()

        assert len(people) == 1
        remote = people[0]
        assert remote.server_id == 1
        assert remote.name == "Bruno"
        assert remote.age == 41
        assert remote.weight == 80.25
        assert remote.synced_at is not None

    @pytest.mark.asyncio
    async def test_empty(self, rest_client):
        assert await rest_client.fetch_all() == []


class TestErrorMapping:
    """Transport failures surface as categorized TransportError."""

    @pytest.mark.asyncio
    async def test_server_error(self, rest_client, api):
        api.fail_status = 500
        with pytest.raises(TransportError) as exc_info:
            await rest_client.save(_person())
        assert exc_info.value.category == TransportErrorCategory.INTERNAL

    @pytest.mark.asyncio
    async def test_timeout(self, api):
        api.delay = 0.5
        server = test_utils.TestServer(api.app())
        await server.start_server()
        client = RestSyncClient(str(server.make_url("/api/person")), timeout=0.05)
        try:
            with pytest.raises(TransportError) as exc_info:
                await client.ping()
            assert exc_info.value.category == TransportErrorCategory.TIMEOUT
        finally:
            await client.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        client = RestSyncClient("http://127.0.0.1:1/api/person", timeout=2.0)
        try:
            with pytest.raises(TransportError) as exc_info:
                await client.fetch_all()
            assert exc_info.value.category == TransportErrorCategory.UNAVAILABLE
        finally:
            await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,category",
        [
            (404, TransportErrorCategory.UNAVAILABLE),
            (408, TransportErrorCategory.TIMEOUT),
            (429, TransportErrorCategory.UNAVAILABLE),
        ],
    )
    async def test_transient_client_statuses(self, rest_client, api, status, category):
        """Statuses about the endpoint, not the data, stay retryable."""
        api.fail_status = status
        with pytest.raises(TransportError) as exc_info:
            await rest_client.save(_person())
        assert exc_info.value.category == category

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 409, 422])
    async def test_other_client_statuses_are_rejections(self, rest_client, api, status):
        api.fail_status = status
        ack = await rest_client.update(_person(server_id=1))
        assert ack.accepted is False
        assert ack.message == "boom"

    @pytest.mark.asyncio
    async def test_missing_route_on_fetch(self, rest_client, api):
        api.fail_status = 404
        with pytest.raises(TransportError) as exc_info:
            await rest_client.fetch_all()
        assert exc_info.value.category == TransportErrorCategory.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_ping(self, rest_client):
        await rest_client.ping()
