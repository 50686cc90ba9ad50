"""
gRPC sync client.

Implements the person.PersonService contract with grpc.aio:

    service PersonService {
      rpc SavePerson (PersonRequest) returns (PersonResponse);
      rpc UpdatePerson (PersonRequest) returns (PersonResponse);
      rpc GetAllPeople (EmptyRequest) returns (stream PersonResponse);
      rpc Ping (EmptyRequest) returns (EmptyRequest);
    }

The message classes are built from a FileDescriptorProto at import time,
so no generated *_pb2 modules are needed.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from ..exceptions import TransportError, TransportErrorCategory
from ..models import Person, parse_timestamp
from .base import RemoteAck, RemotePerson, SyncClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "person.PersonService"

_FIELD = descriptor_pb2.FieldDescriptorProto
_MESSAGE_FIELDS: dict[str, list[tuple[str, int]]] = {
    "PersonRequest": [
        ("name", _FIELD.TYPE_STRING),
        ("last_name", _FIELD.TYPE_STRING),
        ("age", _FIELD.TYPE_INT32),
        ("weight", _FIELD.TYPE_DOUBLE),
        ("local_id", _FIELD.TYPE_STRING),
        ("created_at", _FIELD.TYPE_STRING),
    ],
    "PersonResponse": [
        ("id", _FIELD.TYPE_INT32),
        ("name", _FIELD.TYPE_STRING),
        ("last_name", _FIELD.TYPE_STRING),
        ("age", _FIELD.TYPE_INT32),
        ("weight", _FIELD.TYPE_DOUBLE),
        ("saved", _FIELD.TYPE_BOOL),
        ("message", _FIELD.TYPE_STRING),
        ("created_at", _FIELD.TYPE_STRING),
        ("synced_at", _FIELD.TYPE_STRING),
    ],
    "EmptyRequest": [],
}


def _build_message_classes() -> dict[str, Any]:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="person_sync/person.proto", package="person", syntax="proto3"
    )
    for message_name, message_fields in _MESSAGE_FIELDS.items():
        message = file_proto.message_type.add(name=message_name)
        for number, (field_name, field_type) in enumerate(message_fields, start=1):
            message.field.add(
                name=field_name,
                number=number,
                type=field_type,
                label=_FIELD.LABEL_OPTIONAL,
            )

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return {
        name: message_factory.GetMessageClass(pool.FindMessageTypeByName(f"person.{name}"))
        for name in _MESSAGE_FIELDS
    }


_MESSAGES = _build_message_classes()
PersonRequest = _MESSAGES["PersonRequest"]
PersonResponse = _MESSAGES["PersonResponse"]
EmptyRequest = _MESSAGES["EmptyRequest"]

_STATUS_CATEGORIES = {
    grpc.StatusCode.UNAVAILABLE: TransportErrorCategory.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED: TransportErrorCategory.TIMEOUT,
    grpc.StatusCode.INTERNAL: TransportErrorCategory.INTERNAL,
}


def person_to_request(person: Person, use_server_id: bool = False) -> Any:
    """Build a PersonRequest.

    Updates identify the record by its server id, carried in local_id.
    """
    identity = person.server_id if use_server_id else person.local_id
    return PersonRequest(
        name=person.name,
        last_name=person.last_name,
        age=person.age,
        weight=person.weight,
        local_id="" if identity is None else str(identity),
        created_at=person.created_at.isoformat(),
    )


def response_to_remote_person(response: Any) -> RemotePerson:
    return RemotePerson(
        server_id=response.id,
        name=response.name,
        last_name=response.last_name,
        age=response.age,
        weight=response.weight,
        created_at=parse_timestamp(response.created_at),
        synced_at=parse_timestamp(response.synced_at),
    )


class GrpcSyncClient(SyncClient):
    """gRPC binding of the sync client.

    Example:
        >>> client = GrpcSyncClient("localhost:50051")
        >>> ack = await client.save(person)
        >>> await client.close()
    """

    def __init__(
        self,
        target: str = "localhost:50051",
        timeout: float = 30.0,
        channel: grpc.aio.Channel | None = None,
    ) -> None:
        """Initialize the gRPC client.

        Args:
            target: host:port of the gRPC server
            timeout: Deadline per unary call in seconds
            channel: Optional pre-built channel (otherwise insecure)
        """
        self.target = target
        self.endpoint = target
        self.timeout = timeout
        self._channel = channel
        self._owns_channel = channel is None

    def _get_channel(self) -> grpc.aio.Channel:
        if self._channel is None:
            self._channel = grpc.aio.insecure_channel(
                self.target,
                options=[
                    ("grpc.max_receive_message_length", -1),
                    ("grpc.max_send_message_length", -1),
                ],
            )
            self._owns_channel = True
        return self._channel

    async def close(self) -> None:
        if self._channel is not None and self._owns_channel:
            await self._channel.close()
        self._channel = None

    def _unary(self, method: str) -> Any:
        return self._get_channel().unary_unary(
            f"/{SERVICE_NAME}/{method}",
            request_serializer=lambda message: message.SerializeToString(),
            response_deserializer=PersonResponse.FromString,
        )

    def _translate(self, method: str, error: grpc.aio.AioRpcError) -> TransportError:
        category = _STATUS_CATEGORIES.get(error.code(), TransportErrorCategory.GENERIC)
        logger.warning(f"gRPC Error calling {method}: {error.code().name} {error.details()}")
        return TransportError(
            category, f"{self.target}/{method}", error.details() or error.code().name, error
        )

    def _ack(self, response: Any) -> RemoteAck:
        return RemoteAck(
            accepted=response.saved,
            assigned_id=response.id if response.saved else None,
            message=response.message or None,
        )

    async def save(self, person: Person) -> RemoteAck:
        request = person_to_request(person)
        logger.debug(f"Sending person with LocalId: {request.local_id} to server")
        try:
            response = await self._unary("SavePerson")(request, timeout=self.timeout)
        except grpc.aio.AioRpcError as e:
            raise self._translate("SavePerson", e) from e
        logger.debug(f"Received response for LocalId: {request.local_id}")
        return self._ack(response)

    async def update(self, person: Person) -> RemoteAck:
        if person.server_id is None:
            raise ValueError("update requires a server_id")
        start = time.monotonic()
        try:
            response = await self._unary("UpdatePerson")(
                person_to_request(person, use_server_id=True), timeout=self.timeout
            )
        except grpc.aio.AioRpcError as e:
            raise self._translate("UpdatePerson", e) from e
        logger.debug(
            f"gRPC: Update of ServerId {person.server_id} completed in "
            f"{(time.monotonic() - start) * 1000:.0f}ms"
        )
        return self._ack(response)

    async def fetch_all(self) -> list[RemotePerson]:
        start = time.monotonic()
        people: list[RemotePerson] = []
        stream = self._get_channel().unary_stream(
            f"/{SERVICE_NAME}/GetAllPeople",
            request_serializer=lambda message: message.SerializeToString(),
            response_deserializer=PersonResponse.FromString,
        )
        try:
            async for response in stream(EmptyRequest()):
                people.append(response_to_remote_person(response))
                if len(people) % 1000 == 0:
                    logger.debug(f"gRPC: Received {len(people)} records")
        except grpc.aio.AioRpcError as e:
            raise self._translate("GetAllPeople", e) from e

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(f"gRPC: Total records: {len(people)} in {duration_ms:.0f}ms")
        return people

    async def ping(self) -> None:
        ping = self._get_channel().unary_unary(
            f"/{SERVICE_NAME}/Ping",
            request_serializer=lambda message: message.SerializeToString(),
            response_deserializer=EmptyRequest.FromString,
        )
        try:
            await ping(EmptyRequest(), timeout=self.timeout)
        except grpc.aio.AioRpcError as e:
            raise self._translate("Ping", e) from e
