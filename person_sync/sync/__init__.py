"""
Sync orchestration.

Pushes unconfirmed local records to the remote authority, pulls the
authoritative snapshot on demand, and keeps an observable projection of
sync state for the presentation layer.
"""

from .orchestrator import SaveOutcome, SyncOrchestrator, create_orchestrator
from .projection import SyncProjection
from .report import FailureKind, ResyncReport, SyncFailure, SyncReport
from .scheduler import AutoSyncScheduler

__all__ = [
    "SyncOrchestrator",
    "SaveOutcome",
    "create_orchestrator",
    "SyncProjection",
    "SyncReport",
    "ResyncReport",
    "SyncFailure",
    "FailureKind",
    "AutoSyncScheduler",
]
