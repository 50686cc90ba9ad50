"""
REST sync client.

Talks to the person REST API (default http://localhost:3000/api/person)
with aiohttp. JSON uses camelCase field names; numeric fields may arrive
as strings and are parsed leniently.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import aiohttp

from ..exceptions import TransportError, TransportErrorCategory
from ..models import Person, parse_timestamp
from .base import RemoteAck, RemotePerson, SyncClient

logger = logging.getLogger(__name__)

# Statuses that say nothing about the data: retried on the next trigger
TRANSIENT_STATUSES = {
    404: TransportErrorCategory.UNAVAILABLE,  # Endpoint missing (wrong base URL or route)
    408: TransportErrorCategory.TIMEOUT,
    429: TransportErrorCategory.UNAVAILABLE,
}


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(float(value))
    return int(value)


def _to_float(value: Any) -> float:
    return float(value)


def _parse_remote_person(data: dict[str, Any]) -> RemotePerson:
    return RemotePerson(
        server_id=_to_int(data["id"]),
        name=data.get("name", ""),
        last_name=data.get("lastName", ""),
        age=_to_int(data.get("age", 0)),
        weight=_to_float(data.get("weight", 0)),
        created_at=parse_timestamp(data.get("createdAt")),
        synced_at=parse_timestamp(data.get("syncedAt")),
    )


def _person_payload(person: Person, include_identity: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": person.name,
        "lastName": person.last_name,
        "age": person.age,
        "weight": person.weight,
    }
    if include_identity:
        payload["localId"] = str(person.local_id)
        payload["createdAt"] = person.created_at.isoformat()
    return payload


class RestSyncClient(SyncClient):
    """REST binding of the sync client.

    Example:
        >>> async with RestSyncClient("http://localhost:3000/api/person") as client:
        ...     people = await client.fetch_all()
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000/api/person",
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            base_url: Base URL of the person API
            timeout: Total timeout per request in seconds
            session: Optional externally managed aiohttp session
        """
        self.base_url = base_url.rstrip("/")
        self.endpoint = self.base_url
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> tuple[int, Any]:
        """Send a request and return (status, decoded body).

        5xx responses, network failures and the statuses in
        TRANSIENT_STATUSES raise TransportError. Other statuses are returned
        for the caller to interpret; a remaining 4xx is a rejection of the data.
        """
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, json=payload) as response:
                text = await response.text()
                status = response.status
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise TransportError(TransportErrorCategory.TIMEOUT, url, "Request timeout", e) from e
        except aiohttp.ClientConnectionError as e:
            raise TransportError(TransportErrorCategory.UNAVAILABLE, url, str(e), e) from e
        except aiohttp.ClientError as e:
            raise TransportError(TransportErrorCategory.GENERIC, url, str(e), e) from e

        logger.debug(f"REST: {method} {url} -> {status}")

        if status >= 500:
            raise TransportError(TransportErrorCategory.INTERNAL, url, f"HTTP {status}: {text}")
        if status in TRANSIENT_STATUSES:
            raise TransportError(TRANSIENT_STATUSES[status], url, f"HTTP {status}")

        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except json.JSONDecodeError:
                body = text
        return status, body

    def _ack_from_response(self, status: int, body: Any, fallback_id: int | None) -> RemoteAck:
        if 200 <= status < 300:
            assigned_id = fallback_id
            if isinstance(body, dict) and body.get("id") is not None:
                assigned_id = _to_int(body["id"])
            return RemoteAck(accepted=True, assigned_id=assigned_id)

        message = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
        elif isinstance(body, str):
            message = body
        return RemoteAck(accepted=False, message=message or f"HTTP {status}")

    async def save(self, person: Person) -> RemoteAck:
        logger.debug(f"REST: Saving person with LocalId: {person.local_id}")
        status, body = await self._request(
            "POST", "/rest/create", _person_payload(person, include_identity=True)
        )
        return self._ack_from_response(status, body, None)

    async def update(self, person: Person) -> RemoteAck:
        if person.server_id is None:
            raise ValueError("update requires a server_id")
        start = time.monotonic()
        logger.debug(f"REST: Starting to update person {person.server_id}")
        status, body = await self._request(
            "PUT",
            f"/rest/update/{person.server_id}",
            _person_payload(person, include_identity=False),
        )
        logger.debug(f"REST: Updated person in {(time.monotonic() - start) * 1000:.0f}ms")
        return self._ack_from_response(status, body, person.server_id)

    async def fetch_all(self) -> list[RemotePerson]:
        start = time.monotonic()
        logger.debug("REST: Starting to fetch all people")
        status, body = await self._request("GET", "/rest/all")
        if status >= 300 or not isinstance(body, list):
            raise TransportError(
                TransportErrorCategory.GENERIC,
                f"{self.base_url}/rest/all",
                f"Unexpected response: HTTP {status}",
            )
        people = [_parse_remote_person(item) for item in body]
        logger.info(
            f"REST: Retrieved {len(people)} people in {(time.monotonic() - start) * 1000:.0f}ms"
        )
        return people

    async def ping(self) -> None:
        status, _ = await self._request("GET", "/rest/ping")
        if status >= 300:
            raise TransportError(
                TransportErrorCategory.GENERIC, f"{self.base_url}/rest/ping", f"HTTP {status}"
            )
