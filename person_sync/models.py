"""
Person record, sync status, and display projection types.

The Person dataclass is the unit of work for synchronization. Its sync
status is never stored verbatim; it is derived from the persisted fields
(plus the orchestrator's in-flight set) by derive_status().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 string (or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class SyncStatus(Enum):
    """Per-record synchronization status."""

    LOCALLY_SAVED = "locally_saved"  # Created offline, never attempted
    PENDING_SYNC = "pending_sync"  # Queued after an earlier attempt or edit
    SYNC_IN_PROGRESS = "sync_in_progress"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"


@dataclass
class Person:
    """A person entry, as persisted by the record store.

    Attributes:
        name: First name (required)
        last_name: Last name (required)
        age: Age in years, > 0
        weight: Weight in kg, > 0
        local_id: Store-assigned primary key (None until inserted)
        server_id: Remote id, set once the server accepted the record
        created_at: Creation time, never changed after insert
        last_sync_attempt: Time of the most recent sync attempt
        is_synced: True only after a confirmed remote acknowledgment
        last_error: Reason of the most recent failed attempt
        needs_correction: Server rejected the data; no automatic retry
    """

    name: str
    last_name: str
    age: int
    weight: float
    local_id: int | None = None
    server_id: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    last_sync_attempt: datetime | None = None
    is_synced: bool = False
    last_error: str | None = None
    needs_correction: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.last_name}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "local_id": self.local_id,
            "server_id": self.server_id,
            "name": self.name,
            "last_name": self.last_name,
            "age": self.age,
            "weight": self.weight,
            "created_at": self.created_at.isoformat(),
            "last_sync_attempt": (
                self.last_sync_attempt.isoformat() if self.last_sync_attempt else None
            ),
            "is_synced": self.is_synced,
            "last_error": self.last_error,
            "needs_correction": self.needs_correction,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Person:
        """Create from dictionary."""
        return cls(
            local_id=data.get("local_id"),
            server_id=data.get("server_id"),
            name=data["name"],
            last_name=data["last_name"],
            age=int(data["age"]),
            weight=float(data["weight"]),
            created_at=parse_timestamp(data.get("created_at")) or utc_now(),
            last_sync_attempt=parse_timestamp(data.get("last_sync_attempt")),
            is_synced=bool(data.get("is_synced", False)),
            last_error=data.get("last_error"),
            needs_correction=bool(data.get("needs_correction", False)),
        )


def validate_person_input(
    name: str | None,
    last_name: str | None,
    age: int | None,
    weight: float | None,
) -> list[str]:
    """Return every validation message for the given input (empty when valid)."""
    errors: list[str] = []
    if name is None or not str(name).strip():
        errors.append("First Name is required")
    if last_name is None or not str(last_name).strip():
        errors.append("Last Name is required")
    if age is None or age <= 0:
        errors.append("Age must be greater than 0")
    if weight is None or weight <= 0:
        errors.append("Weight must be greater than 0")
    return errors


def derive_status(person: Person, in_flight: bool = False) -> SyncStatus:
    """Derive the sync status of a record from its persisted fields."""
    if person.is_synced and person.server_id is not None:
        return SyncStatus.SYNCED
    if in_flight:
        return SyncStatus.SYNC_IN_PROGRESS
    if person.last_error is not None or person.needs_correction:
        return SyncStatus.SYNC_FAILED
    if person.last_sync_attempt is None:
        return SyncStatus.LOCALLY_SAVED
    return SyncStatus.PENDING_SYNC


@dataclass(frozen=True)
class StatusDisplay:
    """Text and color for showing a status, independent of any UI toolkit."""

    text: str
    color: str


def describe_status(status: SyncStatus, server_id: int | None = None) -> StatusDisplay:
    """Map a sync status to its display text and color."""
    match status:
        case SyncStatus.LOCALLY_SAVED:
            return StatusDisplay("📱 Saved Locally (Pending Sync)", "orange")
        case SyncStatus.PENDING_SYNC:
            return StatusDisplay("🕓 Pending Sync", "orange")
        case SyncStatus.SYNC_IN_PROGRESS:
            return StatusDisplay("🔄 Sync In Progress", "blue")
        case SyncStatus.SYNCED:
            return StatusDisplay(f"✅ Synced (Server ID: {server_id})", "green")
        case SyncStatus.SYNC_FAILED:
            return StatusDisplay("❌ Sync Failed", "red")
    return StatusDisplay("Unknown Status", "gray")


def describe_connection(online: bool) -> StatusDisplay:
    """Map network reachability to its display text and color."""
    if online:
        return StatusDisplay("🌐 Online", "green")
    return StatusDisplay("📴 Offline", "red")


@dataclass
class PersonDisplay:
    """A record as shown in the pending or synced list."""

    local_id: int
    name: str
    last_name: str
    age: int
    weight: float
    status: SyncStatus
    server_id: int | None = None
    created_at: datetime | None = None
    last_sync_attempt: datetime | None = None
    last_error: str | None = None

    @property
    def display_status(self) -> str:
        return describe_status(self.status, self.server_id).text

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.last_name}"

    @classmethod
    def from_person(cls, person: Person, in_flight: bool = False) -> PersonDisplay:
        if person.local_id is None:
            raise ValueError("Cannot display a person that was never stored")
        return cls(
            local_id=person.local_id,
            name=person.name,
            last_name=person.last_name,
            age=person.age,
            weight=person.weight,
            status=derive_status(person, in_flight),
            server_id=person.server_id,
            created_at=person.created_at,
            last_sync_attempt=person.last_sync_attempt,
            last_error=person.last_error,
        )
