"""
Remote transports.

Two bindings with equivalent semantics:
- GrpcSyncClient: person.PersonService over grpc.aio
- RestSyncClient: the person REST API over aiohttp
"""

from .base import RemoteAck, RemotePerson, SyncClient
from .grpc_client import GrpcSyncClient
from .rest_client import RestSyncClient

__all__ = [
    "SyncClient",
    "RemoteAck",
    "RemotePerson",
    "GrpcSyncClient",
    "RestSyncClient",
]
