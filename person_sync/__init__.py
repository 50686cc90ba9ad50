"""
Person Sync

Offline-first synchronization core for person records.

Provides:
- Durable local store (SQLite) with per-record sync metadata
- Remote transports (gRPC and REST) with equivalent semantics
- Pending push, batched push with bounded concurrency, and full resync
- Observable projection of sync state for a presentation layer

Usage:

    >>> from person_sync import SyncConfig, create_orchestrator
    >>> orchestrator = await create_orchestrator(SyncConfig.from_env())
    >>> outcome = await orchestrator.save_person("Ana", "Lima", 30, 60.5)
    >>> report = await orchestrator.sync_pending()
    >>> print(report.render())
    >>> await orchestrator.close()

Transport Selection:

    # gRPC (default): person.PersonService at localhost:50051
    config = SyncConfig(transport="grpc", grpc_target="localhost:50051")

    # REST: http://localhost:3000/api/person
    config = SyncConfig(transport="rest")
"""

from .config import SyncConfig
from .connectivity import ConnectivityMonitor
from .exceptions import (
    PersonSyncError,
    RecordNotFoundError,
    StorageConnectionError,
    StorageIOError,
    SyncError,
    TransportError,
    TransportErrorCategory,
    ValidationError,
)
from .models import (
    Person,
    PersonDisplay,
    StatusDisplay,
    SyncStatus,
    derive_status,
    describe_connection,
    describe_status,
    validate_person_input,
)
from .store import FailedAttempt, Page, RecordStore, SQLiteRecordStore, SQLiteStoreConfig
from .sync import (
    AutoSyncScheduler,
    FailureKind,
    ResyncReport,
    SaveOutcome,
    SyncFailure,
    SyncOrchestrator,
    SyncProjection,
    SyncReport,
    create_orchestrator,
)
from .transport import GrpcSyncClient, RemoteAck, RemotePerson, RestSyncClient, SyncClient

__all__ = [
    # Configuration
    "SyncConfig",
    "ConnectivityMonitor",
    # Models
    "Person",
    "PersonDisplay",
    "StatusDisplay",
    "SyncStatus",
    "derive_status",
    "describe_status",
    "describe_connection",
    "validate_person_input",
    # Store
    "RecordStore",
    "SQLiteRecordStore",
    "SQLiteStoreConfig",
    "Page",
    "FailedAttempt",
    # Transport
    "SyncClient",
    "GrpcSyncClient",
    "RestSyncClient",
    "RemoteAck",
    "RemotePerson",
    # Sync
    "SyncOrchestrator",
    "SaveOutcome",
    "create_orchestrator",
    "SyncProjection",
    "SyncReport",
    "ResyncReport",
    "SyncFailure",
    "FailureKind",
    "AutoSyncScheduler",
    # Exceptions
    "PersonSyncError",
    "ValidationError",
    "RecordNotFoundError",
    "StorageIOError",
    "StorageConnectionError",
    "TransportError",
    "TransportErrorCategory",
    "SyncError",
]

__version__ = "0.1.0"
