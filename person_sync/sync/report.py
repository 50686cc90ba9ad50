"""
Sync result reporting and failure classification.

Every orchestrated operation returns a structured report; the text
rendering is what the presentation layer shows, while exception text
stays in SyncFailure.detail for logs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..exceptions import StorageIOError, TransportError, TransportErrorCategory
from ..models import utc_now


class FailureKind(Enum):
    """Why a single record failed to sync."""

    TRANSIENT = "transient"  # Network, timeout, server error: retried on next trigger
    REJECTED = "rejected"  # Server refused the data: needs correction first
    STORAGE = "storage"  # Local store failed for this record
    UNEXPECTED = "unexpected"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.REJECTED


_TRANSPORT_REASONS = {
    TransportErrorCategory.UNAVAILABLE: "Server unavailable",
    TransportErrorCategory.TIMEOUT: "Request timeout",
    TransportErrorCategory.INTERNAL: "Server error",
}

# Shown when an online save falls back to local storage
SAVE_FALLBACK_MESSAGES = {
    TransportErrorCategory.UNAVAILABLE: (
        "Unable to connect to the server. Data will be saved locally and synced later."
    ),
    TransportErrorCategory.TIMEOUT: "Server took too long to respond. Data will be saved locally.",
    TransportErrorCategory.INTERNAL: "Server error occurred. Data will be saved locally.",
    TransportErrorCategory.GENERIC: "Communication error with server. Data will be saved locally.",
}

REJECTED_REASON = "Server rejected the data"


def classify_exception(error: BaseException) -> tuple[FailureKind, str]:
    """Map an exception raised while syncing one record to (kind, reason)."""
    if isinstance(error, TransportError):
        reason = _TRANSPORT_REASONS.get(error.category)
        if reason is None:
            reason = f"Communication error: {error.detail or error.message}"
        return FailureKind.TRANSIENT, reason
    if isinstance(error, StorageIOError):
        return FailureKind.STORAGE, "Local storage error"
    return FailureKind.UNEXPECTED, "Unexpected error"


def rejected_reason(server_message: str | None) -> str:
    if server_message:
        return f"{REJECTED_REASON}: {server_message}"
    return REJECTED_REASON


@dataclass
class SyncFailure:
    """One record that failed during a sync operation."""

    local_id: int
    display_name: str
    kind: FailureKind
    reason: str
    detail: str | None = None  # Diagnostic text for logs

    @property
    def summary(self) -> str:
        return f"{self.display_name} - {self.reason}"


@dataclass
class SyncReport:
    """Result of a push operation (sync_pending or sync_changes).

    attempted always equals succeeded + failed.
    """

    operation: str
    attempted: int = 0
    succeeded: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    batches: int = 0
    skipped: bool = False
    skip_reason: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    duration_ms: int = 0

    @classmethod
    def skipped_run(cls, operation: str, reason: str) -> SyncReport:
        report = cls(operation=operation, skipped=True, skip_reason=reason)
        report.finish()
        return report

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return not self.skipped and not self.failures

    @property
    def failure_reasons(self) -> list[str]:
        return [f.summary for f in self.failures]

    @property
    def title(self) -> str:
        if self.skipped:
            return "Sync Skipped"
        if self.failures:
            return "Sync Partially Complete" if self.succeeded else "Sync Failed"
        return "Sync Complete"

    def record_success(self) -> None:
        self.attempted += 1
        self.succeeded += 1

    def record_failure(self, failure: SyncFailure) -> None:
        self.attempted += 1
        self.failures.append(failure)

    def merge(self, other: SyncReport) -> None:
        """Fold a batch report into this one."""
        self.attempted += other.attempted
        self.succeeded += other.succeeded
        self.failures.extend(other.failures)
        self.batches += 1

    def finish(self) -> None:
        self.completed_at = utc_now()
        self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)

    def render(self) -> str:
        """Text summary for display."""
        if self.skipped:
            return self.skip_reason or "Sync skipped"

        lines: list[str] = []
        if self.succeeded:
            lines.append(f"Successfully synced {self.succeeded} records")
            if self.completed_at:
                lines.append(f"Sync completed at: {self.completed_at:%Y-%m-%d %H:%M}")
        if self.failures:
            if lines:
                lines.append("")
            lines.append("Failed to sync:")
            lines.extend(f"- {reason}" for reason in self.failure_reasons)
        if not lines:
            lines.append("There are no changes to sync.")
        return "\n".join(lines)


@dataclass
class ResyncReport:
    """Result of a full resync (authoritative pull)."""

    total_records: int = 0
    replaced: bool = False
    skipped: bool = False
    cancelled: bool = False
    fetch_duration_ms: int = 0
    save_duration_ms: int = 0
    total_duration_ms: int = 0

    @property
    def throughput(self) -> float:
        """Records per second over the whole operation."""
        if self.total_duration_ms <= 0:
            return 0.0
        return self.total_records / (self.total_duration_ms / 1000)

    @property
    def title(self) -> str:
        if self.skipped:
            return "Sync Skipped"
        if self.cancelled:
            return "Sync Cancelled"
        return "Sync Complete"

    def render(self) -> str:
        if self.skipped:
            return "Another sync operation is in progress"
        if self.cancelled:
            return "Full sync was cancelled before local data was replaced"
        if not self.total_records:
            return "No records found on server"

        per_record = self.total_records or 1
        return "\n".join(
            [
                "Sync Complete:",
                f"Total records: {self.total_records}",
                "",
                f"Fetch from server: {self.fetch_duration_ms / 1000:.2f} seconds",
                f"Save to local store: {self.save_duration_ms / 1000:.2f} seconds",
                f"Total time: {self.total_duration_ms / 1000:.2f} seconds",
                "",
                f"Average fetch time: {self.fetch_duration_ms / per_record:.2f} ms/record",
                f"Average save time: {self.save_duration_ms / per_record:.2f} ms/record",
                f"Throughput: {self.throughput:.2f} records/second",
            ]
        )
